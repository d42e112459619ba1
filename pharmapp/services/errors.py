"""Exceptions raised by the inventory and sales services."""

from __future__ import annotations


class PharmacyError(Exception):
    """Base class for service-level failures."""


class SaleValidationError(PharmacyError):
    """The sale request was rejected before any row was written."""


class MedicineUnavailableError(PharmacyError):
    """A referenced medicine is missing or no longer active."""

    def __init__(self, medicine_id: int):
        super().__init__(f"Medicine {medicine_id} is not available.")
        self.medicine_id = medicine_id


class InsufficientStockError(PharmacyError):
    """A decrement would drive stock below zero while backorders are disabled."""

    def __init__(self, medicine_id: int, requested: int, medicine_name: str | None = None):
        label = medicine_name or f"medicine {medicine_id}"
        super().__init__(f"Not enough stock for {label}. Requested {requested}.")
        self.medicine_id = medicine_id
        self.requested = requested
        self.medicine_name = medicine_name


class InvoiceNumberCollision(PharmacyError):
    """Every attempt to claim a unique invoice number collided."""


class DuplicateAccountError(PharmacyError):
    """The email or mobile number already belongs to another account."""
