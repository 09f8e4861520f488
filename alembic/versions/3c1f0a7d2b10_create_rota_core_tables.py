"""create rota core tables

Revision ID: 3c1f0a7d2b10
Revises:
Create Date: 2026-10-19 09:12:44.301522

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3c1f0a7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("venue_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("shift_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("timezone", sa.String(), nullable=False),
        sa.Column("headcount_needed", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("filled_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("status", sa.String(), server_default=sa.text("'draft'"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(op.f("ix_shifts_id"), "shifts", ["id"], unique=False)
    op.create_index(op.f("ix_shifts_company_id"), "shifts", ["company_id"], unique=False)
    op.create_index(op.f("ix_shifts_venue_id"), "shifts", ["venue_id"], unique=False)
    op.create_index(op.f("ix_shifts_role_id"), "shifts", ["role_id"], unique=False)
    op.create_index(op.f("ix_shifts_shift_date"), "shifts", ["shift_date"], unique=False)
    op.create_index(op.f("ix_shifts_status"), "shifts", ["status"], unique=False)
    op.create_index("ix_shifts_company_venue_date", "shifts", ["company_id", "venue_id", "shift_date"], unique=False)

    op.create_table(
        "shift_invites",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("invite_code", sa.String(), nullable=False),
        sa.Column("invited_by", sa.String(), nullable=True),
        sa.Column("invited_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("invite_code", name="shift_invites_invite_code_key"),
    )
    op.create_index(op.f("ix_shift_invites_id"), "shift_invites", ["id"], unique=False)
    op.create_index(op.f("ix_shift_invites_company_id"), "shift_invites", ["company_id"], unique=False)
    op.create_index(op.f("ix_shift_invites_shift_id"), "shift_invites", ["shift_id"], unique=False)
    op.create_index(op.f("ix_shift_invites_worker_id"), "shift_invites", ["worker_id"], unique=False)
    op.create_index(op.f("ix_shift_invites_status"), "shift_invites", ["status"], unique=False)

    op.create_table(
        "shift_allocations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("allocation_type", sa.String(), server_default=sa.text("'direct'"), nullable=False),
        sa.Column("status", sa.String(), server_default=sa.text("'allocated'"), nullable=False),
        sa.Column("invite_id", sa.Integer(), sa.ForeignKey("shift_invites.id"), nullable=True),
        sa.Column("allocated_by", sa.String(), nullable=True),
        sa.Column("allocated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(op.f("ix_shift_allocations_id"), "shift_allocations", ["id"], unique=False)
    op.create_index(op.f("ix_shift_allocations_company_id"), "shift_allocations", ["company_id"], unique=False)
    op.create_index(op.f("ix_shift_allocations_shift_id"), "shift_allocations", ["shift_id"], unique=False)
    op.create_index(op.f("ix_shift_allocations_worker_id"), "shift_allocations", ["worker_id"], unique=False)
    op.create_index(op.f("ix_shift_allocations_status"), "shift_allocations", ["status"], unique=False)

    op.create_table(
        "timekeeping_records",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("venue_id", sa.Integer(), nullable=False),
        sa.Column("clock_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clock_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clock_in_location", sa.String(), nullable=True),
        sa.Column("clock_out_location", sa.String(), nullable=True),
        sa.Column("manual_entry_status", sa.String(), server_default=sa.text("'none'"), nullable=False),
        sa.Column("proposed_clock_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("proposed_clock_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("total_hours", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("approved_by", sa.String(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(op.f("ix_timekeeping_records_id"), "timekeeping_records", ["id"], unique=False)
    op.create_index(op.f("ix_timekeeping_records_company_id"), "timekeeping_records", ["company_id"], unique=False)
    op.create_index(op.f("ix_timekeeping_records_shift_id"), "timekeeping_records", ["shift_id"], unique=False)
    op.create_index(op.f("ix_timekeeping_records_worker_id"), "timekeeping_records", ["worker_id"], unique=False)
    op.create_index(op.f("ix_timekeeping_records_venue_id"), "timekeeping_records", ["venue_id"], unique=False)
    op.create_index(op.f("ix_timekeeping_records_clock_in"), "timekeeping_records", ["clock_in"], unique=False)
    op.create_index(
        op.f("ix_timekeeping_records_manual_entry_status"),
        "timekeeping_records",
        ["manual_entry_status"],
        unique=False,
    )
    op.create_index(op.f("ix_timekeeping_records_status"), "timekeeping_records", ["status"], unique=False)
    op.create_index(
        "ix_timekeeping_records_company_venue_status",
        "timekeeping_records",
        ["company_id", "venue_id", "status"],
        unique=False,
    )

    op.create_table(
        "shift_time_approvals",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column(
            "timekeeping_record_id",
            sa.String(),
            sa.ForeignKey("timekeeping_records.id"),
            nullable=False,
        ),
        sa.Column("requested_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requested_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_shift_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_shift_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("actual_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("manager_notes", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(op.f("ix_shift_time_approvals_id"), "shift_time_approvals", ["id"], unique=False)
    op.create_index(op.f("ix_shift_time_approvals_company_id"), "shift_time_approvals", ["company_id"], unique=False)
    op.create_index(
        op.f("ix_shift_time_approvals_timekeeping_record_id"),
        "shift_time_approvals",
        ["timekeeping_record_id"],
        unique=False,
    )
    op.create_index(op.f("ix_shift_time_approvals_status"), "shift_time_approvals", ["status"], unique=False)

    # Notification events, written in the same transaction as the change they describe.
    op.create_table(
        "event_outbox",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("processed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("company_id", "event_type", "idempotency_key", name="uq_event_outbox_idempotency"),
    )
    for name, columns in (
        ("ix_event_outbox_company_id", ["company_id"]),
        ("ix_event_outbox_event_type", ["event_type"]),
        ("ix_event_outbox_company_event", ["company_id", "event_type"]),
        ("ix_event_outbox_processed", ["processed", "created_at"]),
    ):
        op.create_index(name, "event_outbox", columns, unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("event_outbox")
    op.drop_table("shift_time_approvals")
    op.drop_table("timekeeping_records")
    op.drop_table("shift_allocations")
    op.drop_table("shift_invites")
    op.drop_table("shifts")
