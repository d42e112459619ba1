"""Request payload parsing for the admin, pharmacist and auth blueprints."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from flask import request

from pharmapp.models import MedicineType, PaymentMethod
from pharmapp.services.sales import MAX_AMOUNT, SaleLine, SaleRequest

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MOBILE_PATTERN = re.compile(r"^\+?\d{7,15}$")
MIN_PASSWORD_LENGTH = 6


@dataclass
class CompanyPayload:
    company_name: str
    company_email: str | None
    company_phone: str | None
    company_address: str | None
    contact_person: str | None


@dataclass
class MedicinePayload:
    medicine_name: str
    generic_name: str | None
    company_id: int | None
    medicine_type: str
    buying_price: Decimal
    selling_price: Decimal
    quantity_in_stock: int | None
    min_stock_level: int | None
    expiry_date: date | None
    batch_number: str | None
    description: str | None


@dataclass
class PharmacistPayload:
    full_name: str
    email: str
    mobile: str
    password: str | None
    address: str | None


@dataclass
class ProfilePayload:
    full_name: str
    email: str
    mobile: str
    address: str | None


@dataclass
class PasswordChangePayload:
    current_password: str
    new_password: str


def request_payload() -> Mapping[str, Any]:
    """Return the JSON body when one was sent, otherwise the submitted form."""

    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form


def _text(form: Mapping[str, Any], key: str) -> str | None:
    value = form.get(key)
    if value is None:
        return None
    return str(value).strip() or None


def _decimal(
    form: Mapping[str, Any], key: str, label: str, errors: list[str], *, required=True
) -> Decimal | None:
    raw = form.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            errors.append(f"{label} is required.")
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        errors.append(f"{label} must be a number.")
        return None
    if not value.is_finite():
        errors.append(f"{label} must be a number.")
        return None
    if value < 0:
        errors.append(f"{label} must be a positive number.")
        return None
    if value > MAX_AMOUNT:
        errors.append(f"{label} is out of range.")
        return None
    return value


def _integer(
    value: Any, label: str, errors: list[str], *, required=True
) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors.append(f"{label} is required.")
        return None
    if isinstance(value, bool):
        errors.append(f"{label} must be a whole number.")
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        errors.append(f"{label} must be a whole number.")
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        errors.append(f"{label} must be a whole number.")
        return None


def _iso_date(form: Mapping[str, Any], key: str, label: str, errors: list[str]) -> date | None:
    raw = _text(form, key)
    if raw is None:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        errors.append(f"{label} must be in YYYY-MM-DD format.")
        return None


def _check_email(value: str | None, errors: list[str], *, required=True) -> None:
    if value is None:
        if required:
            errors.append("Please enter a valid email address.")
        return
    if not EMAIL_PATTERN.match(value):
        errors.append("Please enter a valid email address.")


def _check_mobile(value: str | None, errors: list[str], *, required=True) -> None:
    if value is None:
        if required:
            errors.append("Please enter a valid mobile number.")
        return
    if not MOBILE_PATTERN.match(value.replace(" ", "")):
        errors.append("Please enter a valid mobile number.")


def _raw_items(form: Mapping[str, Any]):
    raw = form.get("items")
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return None
    return raw


def parse_sale_form(form: Mapping[str, Any]) -> tuple[SaleRequest | None, list[str]]:
    """Build a :class:`SaleRequest` from a JSON body or submitted form.

    Form submissions carry ``items`` as a JSON encoded list.
    """

    errors: list[str] = []
    raw_items = _raw_items(form)
    if not isinstance(raw_items, list) or not raw_items:
        errors.append("At least one item is required.")
        raw_items = []

    lines: list[SaleLine] = []
    for position, raw_line in enumerate(raw_items, start=1):
        if not isinstance(raw_line, Mapping):
            errors.append(f"Item {position} is malformed.")
            continue
        line_errors: list[str] = []
        medicine_id = _integer(raw_line.get("medicine_id"), f"Item {position} medicine", line_errors)
        quantity = _integer(raw_line.get("quantity"), f"Item {position} quantity", line_errors)
        unit_price = _decimal(raw_line, "unit_price", f"Item {position} unit price", line_errors)
        total_price = _decimal(raw_line, "total_price", f"Item {position} total price", line_errors)
        if quantity is not None and quantity <= 0:
            line_errors.append(f"Item {position} quantity must be greater than zero.")
        if line_errors:
            errors.extend(line_errors)
            continue
        lines.append(
            SaleLine(
                medicine_id=medicine_id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
            )
        )

    total_amount = _decimal(form, "total_amount", "Total amount", errors)
    final_amount = _decimal(form, "final_amount", "Final amount", errors)
    discount_amount = _decimal(
        form, "discount_amount", "Discount amount", errors, required=False
    )

    payment_method = _text(form, "payment_method") or PaymentMethod.CASH
    if payment_method not in PaymentMethod.ALL_METHODS:
        errors.append("Unsupported payment method.")

    customer_mobile = _text(form, "customer_mobile")
    _check_mobile(customer_mobile, errors, required=False)
    invoice_date = _iso_date(form, "invoice_date", "Invoice date", errors)

    if errors:
        return None, errors

    return SaleRequest(
        items=tuple(lines),
        total_amount=total_amount,
        final_amount=final_amount,
        discount_amount=discount_amount if discount_amount is not None else Decimal("0"),
        payment_method=payment_method,
        customer_name=_text(form, "customer_name"),
        customer_mobile=customer_mobile,
        customer_address=_text(form, "customer_address"),
        invoice_date=invoice_date,
    ), []


def parse_company_form(form: Mapping[str, Any]) -> tuple[CompanyPayload | None, list[str]]:
    errors: list[str] = []
    company_name = _text(form, "company_name")
    if company_name is None:
        errors.append("Company name is required.")
    company_email = _text(form, "company_email")
    _check_email(company_email, errors, required=False)
    company_phone = _text(form, "company_phone")
    _check_mobile(company_phone, errors, required=False)

    if errors:
        return None, errors

    return CompanyPayload(
        company_name=company_name,
        company_email=company_email,
        company_phone=company_phone,
        company_address=_text(form, "company_address"),
        contact_person=_text(form, "contact_person"),
    ), []


def parse_medicine_form(form: Mapping[str, Any]) -> tuple[MedicinePayload | None, list[str]]:
    errors: list[str] = []
    medicine_name = _text(form, "medicine_name")
    if medicine_name is None:
        errors.append("Medicine name is required.")

    medicine_type = _text(form, "medicine_type")
    if medicine_type is None:
        errors.append("Medicine type is required.")
    elif medicine_type not in MedicineType.ALL_TYPES:
        errors.append("Unknown medicine type.")

    buying_price = _decimal(form, "buying_price", "Buying price", errors)
    selling_price = _decimal(form, "selling_price", "Selling price", errors)
    company_id = _integer(form.get("company_id"), "Company", errors, required=False)
    quantity_in_stock = _integer(
        form.get("quantity_in_stock"), "Quantity in stock", errors, required=False
    )
    if quantity_in_stock is not None and quantity_in_stock < 0:
        errors.append("Quantity in stock cannot be negative.")
    min_stock_level = _integer(
        form.get("min_stock_level"), "Minimum stock level", errors, required=False
    )
    if min_stock_level is not None and min_stock_level < 0:
        errors.append("Minimum stock level cannot be negative.")
    expiry_date = _iso_date(form, "expiry_date", "Expiry date", errors)

    if errors:
        return None, errors

    return MedicinePayload(
        medicine_name=medicine_name,
        generic_name=_text(form, "generic_name"),
        company_id=company_id,
        medicine_type=medicine_type,
        buying_price=buying_price,
        selling_price=selling_price,
        quantity_in_stock=quantity_in_stock,
        min_stock_level=min_stock_level,
        expiry_date=expiry_date,
        batch_number=_text(form, "batch_number"),
        description=_text(form, "description"),
    ), []


def parse_stock_adjustment_form(
    form: Mapping[str, Any],
) -> tuple[dict[str, Any] | None, list[str]]:
    errors: list[str] = []
    new_quantity = _integer(form.get("new_quantity"), "New quantity", errors, required=False)
    delta = _integer(form.get("delta"), "Delta", errors, required=False)
    if errors:
        return None, errors
    if (new_quantity is None) == (delta is None):
        return None, ["Provide either a new quantity or a delta."]
    return {"new_quantity": new_quantity, "delta": delta, "notes": _text(form, "notes")}, []


def parse_pharmacist_form(
    form: Mapping[str, Any], *, require_password: bool = True
) -> tuple[PharmacistPayload | None, list[str]]:
    errors: list[str] = []
    full_name = _text(form, "full_name")
    if full_name is None:
        errors.append("Full name is required.")
    email = _text(form, "email")
    _check_email(email, errors)
    mobile = _text(form, "mobile")
    _check_mobile(mobile, errors)

    password = form.get("password") or None
    if password is None:
        if require_password:
            errors.append(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
            )
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")

    if errors:
        return None, errors

    return PharmacistPayload(
        full_name=full_name,
        email=email.lower(),
        mobile=mobile,
        password=password,
        address=_text(form, "address"),
    ), []


def parse_profile_form(form: Mapping[str, Any]) -> tuple[ProfilePayload | None, list[str]]:
    errors: list[str] = []
    full_name = _text(form, "full_name")
    if full_name is None:
        errors.append("Full name is required.")
    email = _text(form, "email")
    _check_email(email, errors)
    mobile = _text(form, "mobile")
    _check_mobile(mobile, errors)

    if errors:
        return None, errors

    return ProfilePayload(
        full_name=full_name,
        email=email.lower(),
        mobile=mobile,
        address=_text(form, "address"),
    ), []


def parse_password_change_form(
    form: Mapping[str, Any],
) -> tuple[PasswordChangePayload | None, list[str]]:
    errors: list[str] = []
    current_password = form.get("current_password") or ""
    new_password = form.get("new_password") or ""
    confirm_password = form.get("confirm_password") or ""

    if not current_password:
        errors.append("Current password is required.")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        errors.append(
            f"New password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    if new_password != confirm_password:
        errors.append("Password confirmation does not match.")

    if errors:
        return None, errors

    return PasswordChangePayload(
        current_password=current_password, new_password=new_password
    ), []


def parse_date_range(args: Mapping[str, Any]) -> tuple[date | None, date | None, list[str]]:
    errors: list[str] = []
    date_from = _iso_date(args, "date_from", "Start date", errors)
    date_to = _iso_date(args, "date_to", "End date", errors)
    if date_from and date_to and date_from > date_to:
        errors.append("Start date must be on or before the end date.")
    return date_from, date_to, errors
