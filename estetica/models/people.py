"""Patients and practitioners referenced by appointments, using SQLAlchemy Core."""

from sqlalchemy import Boolean, Column, Index, Table, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID, VARCHAR

from estetica.models.metadata import metadata

# Patients table
patients = Table(
    "patients",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("phone", VARCHAR(30), nullable=True),
    Column("email", VARCHAR(255), nullable=True),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Index("idx_patients_last_name", "last_name"),
)

# Staff who attend appointments
practitioners = Table(
    "practitioners",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("specialty", VARCHAR(100), nullable=True),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
)
