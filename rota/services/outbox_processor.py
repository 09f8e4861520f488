import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from sqlalchemy import case, func, text
from sqlalchemy.orm import Session

from rota.database import session_scope
from rota.models.event_outbox import EventOutbox
from rota.services.time_rules import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboxProcessResult:
    processed: int
    failed: int


OutboxHandler = Callable[[EventOutbox, Session], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _retry_wait(retry_count: int) -> timedelta:
    """Deterministic exponential backoff for outbox retries.

    Contract (tests):
      - retry_count <= 0 => 0s
      - retry_count == 1 => 2s
      - retry_count == 2 => 4s
      - retry_count == 3 => 8s
    Capped at 60s.
    """
    n = int(retry_count) if retry_count is not None else 0
    if n <= 0:
        return timedelta(seconds=0)
    return timedelta(seconds=min(60, 2**n))


def _due(created_at: datetime, retry_count: int, now: datetime) -> bool:
    return as_utc(now) >= as_utc(created_at) + _retry_wait(retry_count)


def _is_due_clause(now: datetime):
    """
    SQL-side due filter (Postgres).

    Applied before LIMIT so rows still backing off cannot starve due rows.
      wait_seconds := 0 if retry_count <= 0 else least(60, 2^retry_count)
      due_at       := created_at + wait_seconds seconds
    """
    retry_count = func.coalesce(EventOutbox.retry_count, 0)

    wait_seconds = case(
        (retry_count <= 0, 0),
        else_=func.least(60, func.power(2, retry_count)),
    )

    due_at = EventOutbox.created_at + (wait_seconds * text("interval '1 second'"))
    return due_at <= now


def _is_postgres(db: Session) -> bool:
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def process_outbox_batch(
    *,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    batch_size: int = 50,
    max_retries: int = 10,
    handlers: Optional[Dict[str, OutboxHandler]] = None,
) -> OutboxProcessResult:
    now = as_utc(now or _utcnow())

    if handlers is None:
        from rota.services.outbox_handlers import default_handlers

        handlers = default_handlers()

    processed = 0
    failed = 0

    with session_scope(db) as s:
        q = s.query(EventOutbox).filter(EventOutbox.processed.is_(False))
        if _is_postgres(s):
            q = q.filter(_is_due_clause(now)).with_for_update(skip_locked=True)
            rows = q.order_by(EventOutbox.id.asc()).limit(int(batch_size)).all()
        else:
            # SQLite: no interval arithmetic, filter in Python before the batch cut.
            candidates = q.order_by(EventOutbox.id.asc()).all()
            rows = [r for r in candidates if _due(r.created_at, r.retry_count, now)][: int(batch_size)]

        for row in rows:
            if not _due(row.created_at, row.retry_count, now):
                continue

            handler = handlers.get(row.event_type)

            try:
                if handler is None:
                    raise ValueError(f"Unknown event_type: {row.event_type}")

                handler(row, s)

                row.processed = True
                row.processed_at = now
                s.flush()
                processed += 1

            except Exception:
                row.retry_count = int(row.retry_count or 0) + 1

                if int(row.retry_count) >= int(max_retries):
                    row.processed = True
                    row.processed_at = now

                s.flush()
                failed += 1
                logger.exception(
                    "Outbox row processing failed",
                    extra={
                        "event_outbox_id": row.id,
                        "event_type": row.event_type,
                        "retry_count": int(row.retry_count),
                        "max_retries": int(max_retries),
                    },
                )

        return OutboxProcessResult(processed=processed, failed=failed)


def try_acquire_outbox_lock(db: Session) -> bool:
    if not _is_postgres(db):
        return True
    res = db.execute(text("select pg_try_advisory_lock(4242, 4243)")).scalar()
    return bool(res)


def release_outbox_lock(db: Session) -> None:
    if not _is_postgres(db):
        return
    db.execute(text("select pg_advisory_unlock(4242, 4243)"))
