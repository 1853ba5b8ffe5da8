"""Database models."""

from estetica.models.appointments import appointment_reminders, appointments
from estetica.models.inventory import products, stock_movements
from estetica.models.metadata import metadata
from estetica.models.people import patients, practitioners
from estetica.models.treatments import (
    medical_records,
    patient_treatments,
    treatment_products,
    treatments,
)

__all__ = [
    "appointment_reminders",
    "appointments",
    "medical_records",
    "metadata",
    "patient_treatments",
    "patients",
    "practitioners",
    "products",
    "stock_movements",
    "treatment_products",
    "treatments",
]
