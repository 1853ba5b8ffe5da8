"""Inventory tables touched by appointment completion."""

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID, VARCHAR

from estetica.models.metadata import metadata

products = Table(
    "products",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("name", Text, nullable=False),
    Column("sku", VARCHAR(50), nullable=True, unique=True),
    Column("unit", VARCHAR(20), nullable=False, server_default="unit"),
    Column("current_stock", Integer, nullable=False, server_default=text("0")),
    Column("min_stock", Integer, nullable=False, server_default=text("0")),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
)

# Signed stock changes; negative quantities are consumption
stock_movements = Table(
    "stock_movements",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column(
        "product_id",
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    ),
    Column("user_id", UUID(as_uuid=True), nullable=False),
    Column("type", VARCHAR(30), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("reason", Text, nullable=True),
    Column("reference", UUID(as_uuid=True), nullable=True),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
)
