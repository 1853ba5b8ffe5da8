"""Forbid overlapping bookings per practitioner.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17 00:00:00.000000

"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add an exclusion constraint over non-cancelled half-open intervals."""
    # btree_gist lets the GiST index combine uuid equality with range overlap
    op.execute('CREATE EXTENSION IF NOT EXISTS "btree_gist"')

    op.execute(
        """
        ALTER TABLE appointments
        ADD CONSTRAINT appointments_practitioner_no_overlap
        EXCLUDE USING gist (
            practitioner_id WITH =,
            tstzrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status <> 'cancelled')
        """
    )


def downgrade() -> None:
    """Drop the exclusion constraint."""
    op.execute(
        "ALTER TABLE appointments DROP CONSTRAINT IF EXISTS appointments_practitioner_no_overlap"
    )
