"""Create scheduling, catalog and inventory tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, postgresql.TIMESTAMP(timezone=True), nullable=True)
    return sa.Column(
        name,
        postgresql.TIMESTAMP(timezone=True),
        server_default=sa.text("NOW()"),
        nullable=False,
    )


def upgrade() -> None:
    """Upgrade database schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "products",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("sku", sa.VARCHAR(length=50), nullable=True),
        sa.Column("unit", sa.VARCHAR(length=20), server_default="unit", nullable=False),
        sa.Column("current_stock", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("min_stock", sa.Integer(), server_default=sa.text("0"), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )

    op.create_table(
        "treatments",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("category", sa.VARCHAR(length=100), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), server_default=sa.text("60"), nullable=False),
        sa.Column("is_active", sa.Integer(), server_default=sa.text("1"), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("duration_minutes > 0", name="treatments_duration_check"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "treatment_products",
        _id_column(),
        sa.Column("treatment_id", postgresql.UUID(), nullable=False),
        sa.Column("product_id", postgresql.UUID(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="treatment_products_quantity_check"),
        sa.ForeignKeyConstraint(["treatment_id"], ["treatments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_treatment_products_treatment_id", "treatment_products", ["treatment_id"])

    op.create_table(
        "appointments",
        _id_column(),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("treatment_id", postgresql.UUID(), nullable=False),
        sa.Column("practitioner_id", postgresql.UUID(), nullable=False),
        sa.Column("start_time", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("end_time", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.Text(), server_default="scheduled", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("external_calendar_event_id", sa.VARCHAR(length=255), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("cancelled_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.CheckConstraint("start_time < end_time", name="appointments_interval_check"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
            name="appointments_status_check",
        ),
        sa.ForeignKeyConstraint(["treatment_id"], ["treatments.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_appointments_practitioner_start", "appointments", ["practitioner_id", "start_time"]
    )
    op.create_index("idx_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("idx_appointments_status", "appointments", ["status"])

    op.create_table(
        "appointment_reminders",
        _id_column(),
        sa.Column("appointment_id", postgresql.UUID(), nullable=False),
        sa.Column("kind", sa.VARCHAR(length=50), nullable=False),
        _timestamp("sent_at"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("appointment_id", "kind", name="uq_appointment_reminders_kind"),
    )

    op.create_table(
        "patient_treatments",
        _id_column(),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("treatment_id", postgresql.UUID(), nullable=False),
        sa.Column("sessions", sa.Integer(), nullable=False),
        sa.Column("completed_sessions", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("status", sa.VARCHAR(length=20), server_default="ACTIVE", nullable=False),
        _timestamp("start_date"),
        _timestamp("end_date", nullable=True),
        sa.CheckConstraint(
            "status IN ('ACTIVE', 'COMPLETED', 'SUSPENDED')",
            name="patient_treatments_status_check",
        ),
        sa.ForeignKeyConstraint(["treatment_id"], ["treatments.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patient_treatments_patient_id", "patient_treatments", ["patient_id"])

    op.create_table(
        "medical_records",
        _id_column(),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("appointment_id", postgresql.UUID(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        _timestamp("record_date"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_medical_records_patient_id", "medical_records", ["patient_id"])

    op.create_table(
        "stock_movements",
        _id_column(),
        sa.Column("product_id", postgresql.UUID(), nullable=False),
        sa.Column("user_id", postgresql.UUID(), nullable=False),
        sa.Column("type", sa.VARCHAR(length=30), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("reference", postgresql.UUID(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_stock_movements_product_id", table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_index("ix_medical_records_patient_id", table_name="medical_records")
    op.drop_table("medical_records")
    op.drop_index("ix_patient_treatments_patient_id", table_name="patient_treatments")
    op.drop_table("patient_treatments")
    op.drop_table("appointment_reminders")
    op.drop_index("idx_appointments_status", table_name="appointments")
    op.drop_index("idx_appointments_patient_id", table_name="appointments")
    op.drop_index("idx_appointments_practitioner_start", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_treatment_products_treatment_id", table_name="treatment_products")
    op.drop_table("treatment_products")
    op.drop_table("treatments")
    op.drop_table("products")
