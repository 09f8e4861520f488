"""rota guard constraints

CHECK constraints and partial unique indexes that back the service-level
state machines: slot counter bounds, one live allocation / pending invite per
worker and shift, one open clock-in and one pending manual entry per
worker and shift, one pending approval per record.

Revision ID: 8e42b6c91d57
Revises: 3c1f0a7d2b10
Create Date: 2026-10-19 09:40:02.118730

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8e42b6c91d57'
down_revision: Union[str, Sequence[str], None] = '3c1f0a7d2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_check_constraint("ck_shifts_end_after_start", "shifts", "end_time > start_time")
    op.create_check_constraint("ck_shifts_headcount_positive", "shifts", "headcount_needed >= 1")
    op.create_check_constraint(
        "ck_shifts_filled_within_headcount",
        "shifts",
        "filled_count >= 0 AND filled_count <= headcount_needed",
    )
    op.create_check_constraint(
        "ck_shifts_status",
        "shifts",
        "status IN ('draft', 'published', 'cancelled')",
    )
    op.create_check_constraint(
        "ck_shift_invites_status",
        "shift_invites",
        "status IN ('pending', 'accepted', 'declined', 'cancelled', 'expired')",
    )
    op.create_check_constraint(
        "ck_shift_allocations_status",
        "shift_allocations",
        "status IN ('allocated', 'confirmed', 'in_progress', 'completed', 'cancelled')",
    )
    op.create_check_constraint(
        "ck_timekeeping_records_manual_entry_status",
        "timekeeping_records",
        "manual_entry_status IN ('none', 'auto_clocked', 'pending', 'approved', 'rejected', 'modified')",
    )
    op.create_check_constraint(
        "ck_timekeeping_records_status",
        "timekeeping_records",
        "status IN ('pending', 'approved', 'disputed', 'rejected')",
    )
    op.create_check_constraint(
        "ck_timekeeping_records_total_hours_nonnegative",
        "timekeeping_records",
        "total_hours IS NULL OR total_hours >= 0",
    )
    op.create_check_constraint(
        "ck_shift_time_approvals_status",
        "shift_time_approvals",
        "status IN ('pending', 'approved', 'rejected', 'modified')",
    )
    op.create_check_constraint(
        "ck_shift_time_approvals_requested_range",
        "shift_time_approvals",
        "requested_end > requested_start",
    )

    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_shift_allocations_live
        ON shift_allocations(shift_id, worker_id)
        WHERE status <> 'cancelled';
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_shift_invites_pending
        ON shift_invites(shift_id, worker_id)
        WHERE status = 'pending';
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_timekeeping_records_open
        ON timekeeping_records(shift_id, worker_id)
        WHERE clock_in IS NOT NULL AND clock_out IS NULL;
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_timekeeping_records_manual_pending
        ON timekeeping_records(shift_id, worker_id)
        WHERE manual_entry_status = 'pending';
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_shift_time_approvals_live
        ON shift_time_approvals(timekeeping_record_id)
        WHERE status = 'pending';
        """
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("DROP INDEX IF EXISTS uq_shift_time_approvals_live;")
    op.execute("DROP INDEX IF EXISTS uq_timekeeping_records_manual_pending;")
    op.execute("DROP INDEX IF EXISTS uq_timekeeping_records_open;")
    op.execute("DROP INDEX IF EXISTS uq_shift_invites_pending;")
    op.execute("DROP INDEX IF EXISTS uq_shift_allocations_live;")

    op.drop_constraint("ck_shift_time_approvals_requested_range", "shift_time_approvals", type_="check")
    op.drop_constraint("ck_shift_time_approvals_status", "shift_time_approvals", type_="check")
    op.drop_constraint("ck_timekeeping_records_total_hours_nonnegative", "timekeeping_records", type_="check")
    op.drop_constraint("ck_timekeeping_records_status", "timekeeping_records", type_="check")
    op.drop_constraint("ck_timekeeping_records_manual_entry_status", "timekeeping_records", type_="check")
    op.drop_constraint("ck_shift_allocations_status", "shift_allocations", type_="check")
    op.drop_constraint("ck_shift_invites_status", "shift_invites", type_="check")
    op.drop_constraint("ck_shifts_status", "shifts", type_="check")
    op.drop_constraint("ck_shifts_filled_within_headcount", "shifts", type_="check")
    op.drop_constraint("ck_shifts_headcount_positive", "shifts", type_="check")
    op.drop_constraint("ck_shifts_end_after_start", "shifts", type_="check")
