import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from rota.core.policy import _env_int
from rota.database import SessionLocal, configure_database
from rota.services.invite_service import expire_stale_invites
from rota.services.outbox_processor import (
    process_outbox_batch,
    release_outbox_lock,
    try_acquire_outbox_lock,
)

logger = logging.getLogger(__name__)


def outbox_worker_enabled() -> bool:
    # Disabled under pytest so tests drive the processor explicitly.
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    v = os.getenv("OUTBOX_WORKER_ENABLED")
    if v is None:
        return True
    return v.strip() not in {"0", "false", "False", "no", "NO"}


def _dispose_engine(db: Session) -> None:
    engine = db.get_bind()
    if engine is not None and hasattr(engine, "dispose"):
        engine.dispose()


def _run_tick(batch_size: int) -> None:
    """Dispatch due outbox events, then sweep invites past their expiry."""
    now = datetime.now(timezone.utc)
    work_db: Session = SessionLocal()
    try:
        process_outbox_batch(db=work_db, now=now, batch_size=batch_size)
        expire_stale_invites(now=now, db=work_db)
        work_db.commit()
    except (OperationalError, DBAPIError):
        work_db.rollback()
        # Connection was killed (database restart): next tick gets fresh ones.
        _dispose_engine(work_db)
        raise
    except Exception:
        work_db.rollback()
        raise
    finally:
        work_db.close()


async def outbox_worker_loop(*, poll_seconds: float = 1.0, batch_size: int = 50) -> None:
    """
    Single-worker loop.

    Never crashes the server on transient database failures. Under
    uvicorn --reload two processes may run the loop; a Postgres advisory
    lock keeps only one of them dispatching.
    """
    logger.info(
        "Outbox worker started",
        extra={"poll_seconds": float(poll_seconds), "batch_size": int(batch_size)},
    )

    while True:
        configure_database()
        lock_db: Session = SessionLocal()
        have_lock = False

        try:
            have_lock = try_acquire_outbox_lock(lock_db)
            if not have_lock:
                lock_db.close()
                await asyncio.sleep(poll_seconds)
                continue

            while True:
                try:
                    _run_tick(batch_size)
                except (OperationalError, DBAPIError):
                    logger.exception(
                        "Outbox worker tick failed",
                        extra={"component": "outbox_worker", "reason": "dbapi_error"},
                    )
                except Exception:
                    logger.exception(
                        "Outbox worker tick failed",
                        extra={"component": "outbox_worker", "reason": "unexpected"},
                    )
                await asyncio.sleep(poll_seconds)

        except asyncio.CancelledError:
            logger.info("Outbox worker cancelled; shutting down")
            raise

        except (OperationalError, DBAPIError):
            logger.exception(
                "Outbox worker lock connection failed",
                extra={"component": "outbox_worker", "reason": "lock_dbapi_error"},
            )
            _dispose_engine(lock_db)
            await asyncio.sleep(poll_seconds)

        finally:
            if have_lock:
                try:
                    release_outbox_lock(lock_db)
                except (OperationalError, DBAPIError):
                    logger.warning("Outbox lock release failed", extra={"component": "outbox_worker"})
            lock_db.close()


def start_outbox_worker_task() -> Optional[asyncio.Task]:
    if not outbox_worker_enabled():
        logger.info("Outbox worker disabled")
        return None

    try:
        poll_seconds = float(os.getenv("OUTBOX_POLL_SECONDS", "1.0"))
    except ValueError:
        poll_seconds = 1.0
    batch_size = _env_int("OUTBOX_BATCH_SIZE", 50)
    return asyncio.create_task(outbox_worker_loop(poll_seconds=poll_seconds, batch_size=batch_size))
