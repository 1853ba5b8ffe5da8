"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID, VARCHAR

from estetica.models.metadata import metadata

# Name of the exclusion constraint added by migration 002
APPOINTMENTS_NO_OVERLAP = "appointments_practitioner_no_overlap"

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # References (owned by other modules)
    Column("patient_id", UUID(as_uuid=True), nullable=False),
    Column(
        "treatment_id",
        UUID(as_uuid=True),
        ForeignKey("treatments.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("practitioner_id", UUID(as_uuid=True), nullable=False),
    # Booked interval, half-open [start_time, end_time)
    Column("start_time", TIMESTAMP(timezone=True), nullable=False),
    Column("end_time", TIMESTAMP(timezone=True), nullable=False),
    # Status management
    Column(
        "status",
        Text,
        nullable=False,
        server_default="scheduled",
    ),
    Column("notes", Text, nullable=True),
    Column("external_calendar_event_id", VARCHAR(255), nullable=True),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("cancelled_at", TIMESTAMP(timezone=True), nullable=True),
    Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
    # Constraints
    CheckConstraint("start_time < end_time", name="appointments_interval_check"),
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
        name="appointments_status_check",
    ),
    Index("idx_appointments_practitioner_start", "practitioner_id", "start_time"),
    Index("idx_appointments_patient_id", "patient_id"),
    Index("idx_appointments_status", "status"),
)

# Reminders already sent, one row per (appointment, kind)
appointment_reminders = Table(
    "appointment_reminders",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column(
        "appointment_id",
        UUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("kind", VARCHAR(50), nullable=False),
    Column("sent_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    UniqueConstraint("appointment_id", "kind", name="uq_appointment_reminders_kind"),
)
