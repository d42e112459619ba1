"""Date-scoped invoice numbering.

Numbers look like ``INV-20261018-001``. The sequence restarts every calendar
day and is derived from the highest number already stored for that day.
Reading the last number is not enough on its own under concurrent writers:
the ``uq_invoices_invoice_number`` constraint rejects a duplicate and the sale
coordinator retries with a freshly generated number.
"""

from __future__ import annotations

import itertools
import logging
import time
import uuid
from datetime import date

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from pharmapp.extensions import db
from pharmapp.models import Invoice

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 3

_fallback_counter = itertools.count(1)


def _prefix_for(on_date: date) -> str:
    invoice_prefix = current_app.config.get("INVOICE_PREFIX", "INV")
    return f"{invoice_prefix}-{on_date:%Y%m%d}"


def format_invoice_number(on_date: date, sequence: int) -> str:
    return f"{_prefix_for(on_date)}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(invoice_number: str) -> int | None:
    """Return the trailing numeric sequence, or ``None`` when it is not numeric."""

    suffix = invoice_number.rsplit("-", 1)[-1]
    if not suffix.isdigit():
        return None
    return int(suffix)


def fallback_invoice_number(on_date: date | None = None) -> str:
    """Build a time-based number used when the daily sequence cannot be read.

    Combines the epoch milliseconds, a process-local counter and a random
    suffix, so two workers falling back in the same millisecond still differ.
    """

    on_date = on_date or date.today()
    stamp = int(time.time() * 1000)
    counter = next(_fallback_counter)
    random_suffix = uuid.uuid4().hex[:6].upper()
    return f"{_prefix_for(on_date)}-T{stamp}{counter:04d}-{random_suffix}"


def _last_number_for(prefix: str) -> str | None:
    # Order by length first so sequences past 999 still sort numerically.
    # Fallback numbers ("-T<stamp>") are excluded from the daily sequence.
    statement = (
        select(Invoice.invoice_number)
        .where(
            Invoice.invoice_number.like(f"{prefix}-%"),
            Invoice.invoice_number.notlike(f"{prefix}-T%"),
        )
        .order_by(
            func.length(Invoice.invoice_number).desc(),
            Invoice.invoice_number.desc(),
        )
        .limit(1)
    )
    return db.session.execute(statement).scalar()


def next_invoice_number(on_date: date | None = None) -> str:
    """Return the next invoice number for ``on_date`` (today by default)."""

    on_date = on_date or date.today()
    prefix = _prefix_for(on_date)

    try:
        with db.session.begin_nested():
            last_number = _last_number_for(prefix)
    except SQLAlchemyError:
        logger.warning(
            "Invoice number lookup failed for %s; using time-based fallback",
            prefix,
            exc_info=True,
        )
        return fallback_invoice_number(on_date)

    if last_number is None:
        return format_invoice_number(on_date, 1)

    sequence = parse_sequence(last_number)
    if sequence is None:
        logger.warning(
            "Could not parse sequence from %s; using time-based fallback", last_number
        )
        return fallback_invoice_number(on_date)

    return format_invoice_number(on_date, sequence + 1)
