import os
_default_test_secret = "test-jwt-secret-for-pytest-only-0000000000000000"
if len(os.environ.get("JWT_SECRET", "")) < 32:
    os.environ["JWT_SECRET"] = _default_test_secret
os.environ.setdefault("ENV", "test")

import subprocess
from datetime import date, time
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

TEST_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rota_test.db")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from rota import database
from rota import models  # noqa: F401
from rota.services import allocation_service, invite_service, shift_service
from rota.tests.helpers import SHIFT_DAY, utc


def is_postgres() -> bool:
    return make_url(TEST_DATABASE_URL).drivername.startswith("postgresql")


def _ensure_database_exists(database_url: str) -> None:
    url = make_url(database_url)

    if not url.drivername.startswith("postgresql"):
        return

    db_name = url.database
    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")

    try:
        with admin_engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": db_name},
            ).scalar()
            if not exists:
                safe_db_name = db_name.replace('"', '""')
                conn.execute(text(f'CREATE DATABASE "{safe_db_name}"'))
    finally:
        admin_engine.dispose()


def _empty_tables() -> None:
    with database.engine.begin() as conn:
        if is_postgres():
            rows = conn.execute(
                text(
                    """
                    SELECT tablename
                    FROM pg_tables
                    WHERE schemaname = 'public'
                      AND tablename <> 'alembic_version'
                    """
                )
            ).fetchall()

            table_names = [row[0] for row in rows]
            if table_names:
                quoted = ", ".join([f'"public"."{name}"' for name in table_names])
                conn.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))
            return

        for table in reversed(database.Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    _ensure_database_exists(TEST_DATABASE_URL)
    database.configure_database()

    if is_postgres():
        env = os.environ.copy()
        env["DATABASE_URL"] = TEST_DATABASE_URL

        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            cwd=Path(__file__).resolve().parents[2],
            env=env,
        )
    else:
        database.Base.metadata.drop_all(database.engine)
        database.Base.metadata.create_all(database.engine)


@pytest.fixture(scope="function", autouse=True)
def _truncate_tables_between_tests():
    _empty_tables()
    yield
    _empty_tables()


@pytest.fixture
def shift_factory():
    def _create(
        company_id: int = 1,
        venue_id: int = 10,
        role_id: int = 20,
        shift_date: date = SHIFT_DAY,
        start_time: time = time(9, 0),
        end_time: time = time(17, 0),
        headcount_needed: int = 1,
        publish: bool = True,
        timezone_name: str = "Europe/London",
    ):
        return shift_service.create_shift(
            company_id,
            venue_id,
            role_id,
            shift_date,
            start_time,
            end_time,
            headcount_needed,
            timezone_name=timezone_name,
            created_by="manager-1",
            publish=publish,
            now=utc(2026, 3, 1, 12),
        )

    return _create


@pytest.fixture
def allocation_factory():
    def _create(shift, worker_id: int):
        return allocation_service.allocate_worker(
            shift.company_id,
            shift.id,
            worker_id,
            allocated_by="manager-1",
            now=utc(2026, 3, 1, 12),
        )

    return _create


@pytest.fixture
def invite_factory():
    def _create(shift, worker_ids, now=None):
        return invite_service.create_invites(
            shift.company_id,
            shift.id,
            list(worker_ids),
            invited_by="manager-1",
            now=now or utc(2026, 3, 1, 12),
        )

    return _create
