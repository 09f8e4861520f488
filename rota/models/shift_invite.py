from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, text
from sqlalchemy.schema import Index

from rota.database import Base

TERMINAL_INVITE_STATUSES = ("accepted", "declined", "cancelled", "expired")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShiftInvite(Base):
    __tablename__ = "shift_invites"

    id = Column(Integer, primary_key=True, index=True)

    company_id = Column(Integer, nullable=False, index=True)
    shift_id = Column(Integer, ForeignKey("shifts.id"), nullable=False, index=True)
    worker_id = Column(Integer, nullable=False, index=True)

    status = Column(String, nullable=False, default="pending", index=True)
    invite_code = Column(String, nullable=False, unique=True)

    invited_by = Column(String, nullable=True)
    invited_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'cancelled', 'expired')",
            name="ck_shift_invites_status",
        ),
        Index(
            "uq_shift_invites_pending",
            "shift_id",
            "worker_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
