"""Treatment catalog and clinical progress tables using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID, VARCHAR

from estetica.models.metadata import metadata

treatments = Table(
    "treatments",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("name", Text, nullable=False),
    Column("category", VARCHAR(100), nullable=True),
    Column("duration_minutes", Integer, nullable=False, server_default=text("60")),
    Column("is_active", Integer, nullable=False, server_default=text("1")),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint("duration_minutes > 0", name="treatments_duration_check"),
)

# Consumables used by each session of a treatment
treatment_products = Table(
    "treatment_products",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column(
        "treatment_id",
        UUID(as_uuid=True),
        ForeignKey("treatments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "product_id",
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("quantity", Integer, nullable=False),
    CheckConstraint("quantity > 0", name="treatment_products_quantity_check"),
)

# A patient's prescribed course of sessions
patient_treatments = Table(
    "patient_treatments",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("patient_id", UUID(as_uuid=True), nullable=False, index=True),
    Column(
        "treatment_id",
        UUID(as_uuid=True),
        ForeignKey("treatments.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("sessions", Integer, nullable=False),
    Column("completed_sessions", Integer, nullable=False, server_default=text("0")),
    Column("status", VARCHAR(20), nullable=False, server_default="ACTIVE"),
    Column("start_date", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("end_date", TIMESTAMP(timezone=True), nullable=True),
    CheckConstraint("status IN ('ACTIVE', 'COMPLETED', 'SUSPENDED')", name="patient_treatments_status_check"),
)

medical_records = Table(
    "medical_records",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("patient_id", UUID(as_uuid=True), nullable=False, index=True),
    Column(
        "appointment_id",
        UUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("title", Text, nullable=False),
    Column("description", Text, nullable=False),
    Column("record_date", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
)
