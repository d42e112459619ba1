from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import update

from pharmapp.extensions import db
from pharmapp.models import (
    Medicine,
    MovementType,
    RecordStatus,
    ReferenceType,
    StockMovement,
)
from pharmapp.services.errors import (
    InsufficientStockError,
    MedicineUnavailableError,
    PharmacyError,
)

logger = logging.getLogger(__name__)


def apply_delta(medicine_id: int, quantity_delta: int, *, allow_negative: bool = False) -> None:
    """Shift ``quantity_in_stock`` by ``quantity_delta`` inside the caller's transaction.

    The change is issued as a relative ``UPDATE`` so concurrent writers
    compose. Unless ``allow_negative`` is set, the statement only matches rows
    whose resulting quantity stays at or above zero.
    """

    if quantity_delta == 0:
        return

    conditions = [
        Medicine.id == medicine_id,
        Medicine.status == RecordStatus.ACTIVE,
    ]
    if quantity_delta < 0 and not allow_negative:
        conditions.append(Medicine.quantity_in_stock >= -quantity_delta)

    result = db.session.execute(
        update(Medicine)
        .where(*conditions)
        .values(quantity_in_stock=Medicine.quantity_in_stock + quantity_delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    medicine = db.session.get(Medicine, medicine_id, populate_existing=True)
    if medicine is None or medicine.status != RecordStatus.ACTIVE:
        raise MedicineUnavailableError(medicine_id)
    raise InsufficientStockError(medicine_id, -quantity_delta, medicine.medicine_name)


def record_movement(
    *,
    medicine_id: int,
    movement_type: str,
    quantity: int,
    reference_type: str,
    created_by: int,
    reference_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """Append a stock movement row. The caller owns the transaction."""

    if movement_type not in MovementType.ALL_TYPES:
        raise PharmacyError(f"Unknown movement type {movement_type!r}.")
    if reference_type not in ReferenceType.ALL_TYPES:
        raise PharmacyError(f"Unknown reference type {reference_type!r}.")

    movement = StockMovement(
        medicine_id=medicine_id,
        movement_type=movement_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        created_by=created_by,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def current_quantity(medicine_id: int) -> int | None:
    medicine = db.session.get(Medicine, medicine_id, populate_existing=True)
    if medicine is None:
        return None
    return medicine.quantity_in_stock


def adjust_stock(
    medicine_id: int,
    *,
    actor_id: int,
    new_quantity: int | None = None,
    delta: int | None = None,
    notes: str | None = None,
    allow_negative: bool = False,
) -> int:
    """Apply an administrative stock correction and commit it.

    Either ``new_quantity`` (an absolute target) or ``delta`` must be given.
    The absolute target is converted into a delta against the stored value
    and applied relatively, so a sale landing in between is not overwritten.
    Returns the quantity after the adjustment.
    """

    if (new_quantity is None) == (delta is None):
        raise PharmacyError("Provide either a new quantity or a delta.")

    if new_quantity is not None:
        if new_quantity < 0 and not allow_negative:
            raise PharmacyError("Stock quantity cannot be negative.")
        stored = current_quantity(medicine_id)
        if stored is None:
            raise MedicineUnavailableError(medicine_id)
        delta = new_quantity - stored

    if delta == 0:
        return current_quantity(medicine_id)

    try:
        apply_delta(medicine_id, delta, allow_negative=allow_negative)
        record_movement(
            medicine_id=medicine_id,
            movement_type=MovementType.ADJUSTMENT,
            quantity=delta,
            reference_type=ReferenceType.ADJUSTMENT,
            notes=notes or "Manual stock adjustment",
            created_by=actor_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Adjusted stock for medicine %s by %s", medicine_id, delta)
    return current_quantity(medicine_id)


def receive_stock(
    medicine_id: int,
    quantity: int,
    *,
    actor_id: int,
    notes: str | None = None,
) -> None:
    """Book incoming stock as an ``in``/``purchase`` movement. Does not commit."""

    if quantity <= 0:
        raise PharmacyError("Received quantity must be greater than zero.")
    apply_delta(medicine_id, quantity)
    record_movement(
        medicine_id=medicine_id,
        movement_type=MovementType.IN,
        quantity=quantity,
        reference_type=ReferenceType.PURCHASE,
        notes=notes or "Opening stock",
        created_by=actor_id,
    )


def is_low_stock(medicine: Medicine) -> bool:
    return medicine.is_low_stock


def is_expired(medicine: Medicine, today: date | None = None) -> bool:
    return medicine.is_expired_on(today or date.today())


def low_stock_medicines() -> list[Medicine]:
    return (
        Medicine.active()
        .filter(Medicine.quantity_in_stock <= Medicine.min_stock_level)
        .order_by(Medicine.quantity_in_stock.asc(), Medicine.medicine_name.asc())
        .all()
    )


def expired_medicines(today: date | None = None) -> list[Medicine]:
    today = today or date.today()
    return (
        Medicine.active()
        .filter(Medicine.expiry_date.isnot(None), Medicine.expiry_date < today)
        .order_by(Medicine.expiry_date.asc())
        .all()
    )


def movements_for(medicine_id: int, *, limit: int = 50) -> list[StockMovement]:
    return (
        StockMovement.query.filter_by(medicine_id=medicine_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
