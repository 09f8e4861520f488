import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()

DATABASE_URL = ""
engine = None
_configured_database_url = None


def _get_database_url() -> str:
    return os.getenv("DATABASE_URL", "postgresql://localhost/rota")


def configure_database() -> None:
    global DATABASE_URL, engine, _configured_database_url

    database_url = _get_database_url()

    if engine is not None and _configured_database_url == database_url:
        return

    connect_args = {}
    if database_url.startswith("sqlite"):
        # TestClient runs sync handlers in a threadpool.
        connect_args = {"check_same_thread": False, "timeout": 15}

    engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
    SessionLocal.configure(bind=engine)
    DATABASE_URL = database_url
    _configured_database_url = database_url


configure_database()


@contextmanager
def session_scope(db: Optional[Session] = None) -> Iterator[Session]:
    """
    If db is provided, the caller owns the transaction: no commit, no close.
    If db is None, a session is opened, committed on success, rolled back on error and closed.
    """
    if db is not None:
        yield db
        return

    owned = SessionLocal()
    try:
        yield owned
        owned.commit()
    except Exception:
        owned.rollback()
        raise
    finally:
        owned.close()
