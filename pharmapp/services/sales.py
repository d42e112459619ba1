"""Point-of-sale invoice creation.

``create_invoice`` is the only write path for invoices. It writes the header,
the line items, the stock decrements and the stock movements in one
transaction and either commits all of them or none.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload, selectinload

from pharmapp.extensions import db
from pharmapp.models import (
    Invoice,
    InvoiceItem,
    Medicine,
    MovementType,
    PaymentMethod,
    ReferenceType,
    User,
)
from pharmapp.services import stock_ledger
from pharmapp.services.errors import (
    InsufficientStockError,
    InvoiceNumberCollision,
    MedicineUnavailableError,
    SaleValidationError,
)
from pharmapp.services.invoice_numbers import next_invoice_number

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
GENERIC_FAILURE_MESSAGE = "Failed to create invoice"
AMOUNT_RANGE_MESSAGE = "Amounts are out of range."
# Largest value a NUMERIC(10,2) column holds.
MAX_AMOUNT = Decimal("99999999.99")


def to_cents(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SaleLine:
    medicine_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class SaleRequest:
    items: tuple[SaleLine, ...]
    total_amount: Decimal
    final_amount: Decimal
    discount_amount: Decimal = Decimal("0")
    payment_method: str = PaymentMethod.CASH
    customer_name: str | None = None
    customer_mobile: str | None = None
    customer_address: str | None = None
    invoice_date: date | None = None


@dataclass
class SaleResult:
    success: bool
    invoice: Invoice | None = None
    message: str = ""
    errors: list[str] = field(default_factory=list)

    def to_response(self) -> dict:
        payload: dict = {"success": self.success, "message": self.message}
        if self.invoice is not None:
            payload["invoice_id"] = self.invoice.id
            payload["invoice_number"] = self.invoice.invoice_number
        return payload


def validate_sale(sale: SaleRequest, pharmacist_id: int) -> None:
    """Raise :class:`SaleValidationError` when ``sale`` cannot be written."""

    if not sale.items:
        raise SaleValidationError("At least one item is required.")

    try:
        seen = _validate_amounts(sale)
    except InvalidOperation as exc:
        raise SaleValidationError(AMOUNT_RANGE_MESSAGE) from exc

    if sale.payment_method not in PaymentMethod.ALL_METHODS:
        raise SaleValidationError("Unsupported payment method.")

    pharmacist = db.session.get(User, pharmacist_id)
    if pharmacist is None or not pharmacist.is_active or not pharmacist.is_pharmacist:
        raise SaleValidationError("Only active pharmacists can record sales.")

    available_ids = {
        medicine_id
        for (medicine_id,) in Medicine.active()
        .filter(Medicine.id.in_(seen))
        .with_entities(Medicine.id)
        .all()
    }
    missing = [line.medicine_id for line in sale.items if line.medicine_id not in available_ids]
    if missing:
        raise SaleValidationError(f"Medicine {missing[0]} is not available.")


def _check_range(*values: Decimal) -> None:
    for value in values:
        if not Decimal(value).is_finite() or abs(Decimal(value)) > MAX_AMOUNT:
            raise SaleValidationError(AMOUNT_RANGE_MESSAGE)


def _validate_amounts(sale: SaleRequest) -> set[int]:
    """Check line and header money fields; return the medicine ids sold."""

    seen: set[int] = set()
    line_total_sum = Decimal("0")
    for line in sale.items:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
            raise SaleValidationError("Item quantities must be whole numbers.")
        if line.quantity <= 0:
            raise SaleValidationError("Item quantities must be greater than zero.")
        _check_range(line.unit_price, line.total_price)
        if line.unit_price < 0 or line.total_price < 0:
            raise SaleValidationError("Item prices cannot be negative.")
        # Prices are stored as NUMERIC(10,2).
        if (
            to_cents(line.unit_price) != line.unit_price
            or to_cents(line.total_price) != line.total_price
        ):
            raise SaleValidationError("Item prices must be given in whole cents.")
        if line.total_price != line.unit_price * line.quantity:
            raise SaleValidationError(
                f"Line total for medicine {line.medicine_id} does not match "
                "quantity times unit price."
            )
        if line.medicine_id in seen:
            raise SaleValidationError(
                f"Medicine {line.medicine_id} appears more than once in the sale."
            )
        seen.add(line.medicine_id)
        line_total_sum += to_cents(line.total_price)

    _check_range(sale.total_amount, sale.discount_amount, sale.final_amount)
    total = to_cents(sale.total_amount)
    discount = to_cents(sale.discount_amount)
    final = to_cents(sale.final_amount)
    if total < 0 or discount < 0 or final < 0:
        raise SaleValidationError("Amounts cannot be negative.")
    if discount > total:
        raise SaleValidationError("Discount cannot exceed the total amount.")
    if total != line_total_sum:
        raise SaleValidationError("Total amount does not match the sum of the items.")
    if final != total - discount:
        raise SaleValidationError("Final amount must equal total minus discount.")
    return seen


def _is_invoice_number_collision(error: IntegrityError) -> bool:
    original = getattr(error, "orig", None)
    pgcode = getattr(original, "pgcode", None)
    if pgcode == "23505":
        diag = getattr(original, "diag", None)
        constraint = getattr(diag, "constraint_name", None) if diag else None
        if constraint:
            return constraint == "uq_invoices_invoice_number"

    message = str(error).lower()
    return "uq_invoices_invoice_number" in message or "invoices.invoice_number" in message


def _write_sale(
    sale: SaleRequest,
    pharmacist_id: int,
    invoice_number: str,
    *,
    allow_backorder: bool,
) -> int:
    invoice = Invoice(
        invoice_number=invoice_number,
        customer_name=sale.customer_name or None,
        customer_mobile=sale.customer_mobile or None,
        customer_address=sale.customer_address or None,
        pharmacist_id=pharmacist_id,
        total_amount=to_cents(sale.total_amount),
        discount_amount=to_cents(sale.discount_amount),
        final_amount=to_cents(sale.final_amount),
        payment_method=sale.payment_method,
        invoice_date=sale.invoice_date or date.today(),
    )
    db.session.add(invoice)
    db.session.flush()

    for line in sale.items:
        db.session.add(
            InvoiceItem(
                invoice_id=invoice.id,
                medicine_id=line.medicine_id,
                quantity=line.quantity,
                unit_price=to_cents(line.unit_price),
                total_price=to_cents(line.total_price),
            )
        )
        db.session.flush()
        stock_ledger.apply_delta(
            line.medicine_id, -line.quantity, allow_negative=allow_backorder
        )
        stock_ledger.record_movement(
            medicine_id=line.medicine_id,
            movement_type=MovementType.OUT,
            quantity=line.quantity,
            reference_type=ReferenceType.SALE,
            reference_id=invoice.id,
            notes=f"Sale via invoice {invoice_number}",
            created_by=pharmacist_id,
        )

    return invoice.id


def _persist_sale(
    sale: SaleRequest,
    pharmacist_id: int,
    *,
    max_attempts: int,
    allow_backorder: bool,
) -> int:
    for attempt in range(1, max_attempts + 1):
        invoice_number = next_invoice_number()
        try:
            invoice_id = _write_sale(
                sale, pharmacist_id, invoice_number, allow_backorder=allow_backorder
            )
            db.session.commit()
            return invoice_id
        except IntegrityError as error:
            db.session.rollback()
            if not _is_invoice_number_collision(error):
                raise
            logger.warning(
                "Invoice number %s already taken (attempt %s of %s)",
                invoice_number,
                attempt,
                max_attempts,
            )

    raise InvoiceNumberCollision(
        f"Could not allocate a unique invoice number after {max_attempts} attempts."
    )


def get_invoice(invoice_id: int) -> Invoice | None:
    """Load an invoice with its items, medicines and pharmacist attached."""

    return (
        Invoice.query.options(
            joinedload(Invoice.pharmacist),
            selectinload(Invoice.items)
            .joinedload(InvoiceItem.medicine)
            .joinedload(Medicine.company),
        )
        .filter(Invoice.id == invoice_id)
        .first()
    )


def create_invoice(sale: SaleRequest, pharmacist_id: int) -> SaleResult:
    """Record a sale as one all-or-nothing unit of work.

    Validation failures are reported before the transaction opens. Any
    failure after that rolls back every write of the attempt. Invoice-number
    collisions are retried with a fresh number up to
    ``INVOICE_NUMBER_MAX_ATTEMPTS`` times.
    """

    try:
        validate_sale(sale, pharmacist_id)
    except SaleValidationError as error:
        return SaleResult(success=False, message=str(error), errors=[str(error)])

    max_attempts = max(1, int(current_app.config.get("INVOICE_NUMBER_MAX_ATTEMPTS", 5)))
    allow_backorder = bool(current_app.config.get("ALLOW_BACKORDER", False))

    try:
        invoice_id = _persist_sale(
            sale,
            pharmacist_id,
            max_attempts=max_attempts,
            allow_backorder=allow_backorder,
        )
    except (InsufficientStockError, MedicineUnavailableError) as error:
        db.session.rollback()
        current_app.logger.info("Sale rejected for pharmacist %s: %s", pharmacist_id, error)
        return SaleResult(success=False, message=str(error), errors=[str(error)])
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create invoice")
        return SaleResult(success=False, message=GENERIC_FAILURE_MESSAGE)

    invoice = get_invoice(invoice_id)
    current_app.logger.info(
        "Created invoice %s for pharmacist %s (%s items)",
        invoice.invoice_number,
        pharmacist_id,
        len(invoice.items),
    )
    return SaleResult(success=True, invoice=invoice, message="Invoice created successfully")
