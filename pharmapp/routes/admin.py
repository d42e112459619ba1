from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from pharmapp.extensions import db
from pharmapp.forms import (
    parse_company_form,
    parse_date_range,
    parse_medicine_form,
    parse_pharmacist_form,
    parse_profile_form,
    parse_stock_adjustment_form,
    request_payload,
)
from pharmapp.models import Company, Medicine, User, UserRole
from pharmapp.security import require_admin
from pharmapp.services import accounts, catalog, reporting, stock_ledger
from pharmapp.services.errors import PharmacyError
from pharmapp.services.sales import get_invoice

bp = Blueprint("admin", __name__, url_prefix="/admin")


def _error(message: str, status_code: int = 400):
    return jsonify({"success": False, "message": message}), status_code


def _active_company_or_404(company_id: int) -> Company:
    company = Company.active().filter(Company.id == company_id).first()
    if company is None:
        abort(404, description="Company not found")
    return company


def _active_medicine_or_404(medicine_id: int) -> Medicine:
    medicine = Medicine.active().filter(Medicine.id == medicine_id).first()
    if medicine is None:
        abort(404, description="Medicine not found")
    return medicine


def _pharmacist_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or user.role != UserRole.PHARMACIST:
        abort(404, description="Pharmacist not found")
    return user


def _check_company_reference(company_id: int | None) -> str | None:
    if company_id is None:
        return None
    if Company.active().filter(Company.id == company_id).first() is None:
        return "Selected company does not exist."
    return None


@bp.get("/dashboard")
@require_admin
def dashboard():
    return jsonify({"stats": reporting.admin_dashboard_stats()})


# Companies


@bp.get("/companies")
@require_admin
def companies():
    return jsonify({"companies": catalog.companies_with_medicine_count()})


@bp.get("/companies/search")
@require_admin
def search_companies():
    term = (request.args.get("q") or "").strip()
    if not term:
        return jsonify({"companies": []})
    return jsonify(
        {"companies": [company.to_dict() for company in catalog.search_companies(term)]}
    )


@bp.post("/companies")
@require_admin
def create_company():
    payload, errors = parse_company_form(request_payload())
    if errors:
        return _error(errors[0])

    company = Company(
        company_name=payload.company_name,
        company_email=payload.company_email,
        company_phone=payload.company_phone,
        company_address=payload.company_address,
        contact_person=payload.contact_person,
    )
    db.session.add(company)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to add company")
        return _error("Failed to add company", 500)

    current_app.logger.info("Company %s added by %s", company.id, current_user.id)
    return (
        jsonify(
            {
                "success": True,
                "message": "Company added successfully",
                "company": company.to_dict(),
            }
        ),
        201,
    )


@bp.post("/companies/<int:company_id>/update")
@require_admin
def update_company(company_id: int):
    company = _active_company_or_404(company_id)
    payload, errors = parse_company_form(request_payload())
    if errors:
        return _error(errors[0])

    company.company_name = payload.company_name
    company.company_email = payload.company_email
    company.company_phone = payload.company_phone
    company.company_address = payload.company_address
    company.contact_person = payload.contact_person
    db.session.commit()
    return jsonify(
        {
            "success": True,
            "message": "Company updated successfully",
            "company": company.to_dict(),
        }
    )


@bp.post("/companies/<int:company_id>/delete")
@require_admin
def delete_company(company_id: int):
    company = _active_company_or_404(company_id)
    company.deactivate()
    db.session.commit()
    current_app.logger.info("Company %s deactivated by %s", company.id, current_user.id)
    return jsonify({"success": True, "message": "Company deleted successfully"})


# Medicines


@bp.get("/medicines")
@require_admin
def medicines():
    term = (request.args.get("search") or "").strip()
    results = catalog.search_medicines(term) if term else catalog.list_medicines()
    return jsonify(
        {
            "medicines": [medicine.to_dict() for medicine in results],
            "companies": [company.to_dict() for company in catalog.list_companies()],
            "search": term,
        }
    )


@bp.post("/medicines")
@require_admin
def create_medicine():
    payload, errors = parse_medicine_form(request_payload())
    if errors:
        return _error(errors[0])
    company_error = _check_company_reference(payload.company_id)
    if company_error:
        return _error(company_error)

    min_stock_level = payload.min_stock_level
    if min_stock_level is None:
        min_stock_level = current_app.config.get("DEFAULT_MIN_STOCK_LEVEL", 10)

    medicine = Medicine(
        medicine_name=payload.medicine_name,
        generic_name=payload.generic_name,
        company_id=payload.company_id,
        medicine_type=payload.medicine_type,
        buying_price=payload.buying_price,
        selling_price=payload.selling_price,
        quantity_in_stock=0,
        min_stock_level=min_stock_level,
        expiry_date=payload.expiry_date,
        batch_number=payload.batch_number,
        description=payload.description,
    )
    try:
        db.session.add(medicine)
        db.session.flush()
        if payload.quantity_in_stock:
            stock_ledger.receive_stock(
                medicine.id, payload.quantity_in_stock, actor_id=current_user.id
            )
        db.session.commit()
    except (PharmacyError, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Failed to add medicine")
        return _error("Failed to add medicine", 500)

    current_app.logger.info("Medicine %s added by %s", medicine.id, current_user.id)
    return (
        jsonify(
            {
                "success": True,
                "message": "Medicine added successfully",
                "medicine": medicine.to_dict(),
            }
        ),
        201,
    )


@bp.get("/medicines/<int:medicine_id>")
@require_admin
def medicine_detail(medicine_id: int):
    medicine = _active_medicine_or_404(medicine_id)
    return jsonify(
        {
            "medicine": medicine.to_dict(),
            "movements": [
                movement.to_dict() for movement in stock_ledger.movements_for(medicine.id)
            ],
            "companies": [company.to_dict() for company in catalog.list_companies()],
        }
    )


@bp.post("/medicines/<int:medicine_id>/update")
@require_admin
def update_medicine(medicine_id: int):
    medicine = _active_medicine_or_404(medicine_id)
    payload, errors = parse_medicine_form(request_payload())
    if errors:
        return _error(errors[0])
    company_error = _check_company_reference(payload.company_id)
    if company_error:
        return _error(company_error)

    medicine.medicine_name = payload.medicine_name
    medicine.generic_name = payload.generic_name
    medicine.company_id = payload.company_id
    medicine.medicine_type = payload.medicine_type
    medicine.buying_price = payload.buying_price
    medicine.selling_price = payload.selling_price
    if payload.min_stock_level is not None:
        medicine.min_stock_level = payload.min_stock_level
    medicine.expiry_date = payload.expiry_date
    medicine.batch_number = payload.batch_number
    medicine.description = payload.description
    db.session.commit()

    if payload.quantity_in_stock is not None:
        try:
            stock_ledger.adjust_stock(
                medicine.id,
                actor_id=current_user.id,
                new_quantity=payload.quantity_in_stock,
                notes="Stock corrected from medicine update",
            )
        except PharmacyError as exc:
            return _error(str(exc))

    db.session.refresh(medicine)
    return jsonify(
        {
            "success": True,
            "message": "Medicine updated successfully",
            "medicine": medicine.to_dict(),
        }
    )


@bp.post("/medicines/<int:medicine_id>/stock")
@require_admin
def adjust_medicine_stock(medicine_id: int):
    medicine = _active_medicine_or_404(medicine_id)
    adjustment, errors = parse_stock_adjustment_form(request_payload())
    if errors:
        return _error(errors[0])

    try:
        quantity = stock_ledger.adjust_stock(
            medicine.id,
            actor_id=current_user.id,
            new_quantity=adjustment["new_quantity"],
            delta=adjustment["delta"],
            notes=adjustment["notes"],
        )
    except PharmacyError as exc:
        return _error(str(exc))

    return jsonify(
        {
            "success": True,
            "message": "Stock adjusted successfully",
            "quantity_in_stock": quantity,
        }
    )


@bp.post("/medicines/<int:medicine_id>/delete")
@require_admin
def delete_medicine(medicine_id: int):
    medicine = _active_medicine_or_404(medicine_id)
    medicine.deactivate()
    db.session.commit()
    current_app.logger.info("Medicine %s deactivated by %s", medicine.id, current_user.id)
    return jsonify({"success": True, "message": "Medicine deleted successfully"})


# Pharmacists


@bp.get("/pharmacists")
@require_admin
def pharmacists():
    return jsonify(
        {"pharmacists": [user.to_dict() for user in catalog.list_pharmacists()]}
    )


@bp.post("/pharmacists")
@require_admin
def create_pharmacist():
    payload, errors = parse_pharmacist_form(request_payload())
    if errors:
        return _error(errors[0])

    try:
        user = accounts.create_pharmacist(
            full_name=payload.full_name,
            email=payload.email,
            mobile=payload.mobile,
            password=payload.password,
            address=payload.address,
        )
    except PharmacyError as exc:
        return _error(str(exc), 409)

    return (
        jsonify(
            {
                "success": True,
                "message": "Pharmacist added successfully",
                "pharmacist": user.to_dict(),
            }
        ),
        201,
    )


@bp.get("/pharmacists/<int:user_id>")
@require_admin
def pharmacist_detail(user_id: int):
    user = _pharmacist_or_404(user_id)
    return jsonify(
        {
            "pharmacist": user.to_dict(),
            "sales": reporting.sales_stats(pharmacist_id=user.id),
        }
    )


@bp.post("/pharmacists/<int:user_id>/update")
@require_admin
def update_pharmacist(user_id: int):
    user = _pharmacist_or_404(user_id)
    payload, errors = parse_pharmacist_form(request_payload(), require_password=False)
    if errors:
        return _error(errors[0])

    try:
        accounts.update_account(
            user,
            full_name=payload.full_name,
            email=payload.email,
            mobile=payload.mobile,
            address=payload.address,
            password=payload.password,
        )
    except PharmacyError as exc:
        return _error(str(exc), 409)

    return jsonify(
        {
            "success": True,
            "message": "Pharmacist updated successfully",
            "pharmacist": user.to_dict(),
        }
    )


@bp.post("/pharmacists/<int:user_id>/deactivate")
@require_admin
def deactivate_pharmacist(user_id: int):
    user = _pharmacist_or_404(user_id)
    accounts.set_account_status(user, active=False)
    return jsonify({"success": True, "message": "Pharmacist deactivated successfully"})


@bp.post("/pharmacists/<int:user_id>/activate")
@require_admin
def activate_pharmacist(user_id: int):
    user = _pharmacist_or_404(user_id)
    accounts.set_account_status(user, active=True)
    return jsonify({"success": True, "message": "Pharmacist activated successfully"})


# Reports and invoices


@bp.get("/reports")
@require_admin
def reports():
    date_from, date_to, errors = parse_date_range(request.args)
    if errors:
        return _error(errors[0])
    pharmacist_id = request.args.get("pharmacist_id", type=int)

    sales_data: list[dict] = []
    total_stats = {"total_invoices": 0, "total_sales": 0.0, "average_sale": 0.0}
    if date_from and date_to:
        sales_data = reporting.sales_by_date_range(date_from, date_to, pharmacist_id)
        total_stats = reporting.sales_stats(pharmacist_id, date_from, date_to)

    return jsonify(
        {
            "sales_data": sales_data,
            "total_stats": total_stats,
            "pharmacists": [user.to_dict() for user in catalog.list_pharmacists()],
            "filters": {
                "date_from": date_from.isoformat() if date_from else None,
                "date_to": date_to.isoformat() if date_to else None,
                "pharmacist_id": pharmacist_id,
            },
        }
    )


@bp.get("/invoices")
@require_admin
def invoices():
    term = (request.args.get("search") or "").strip()
    limit = current_app.config.get("RECENT_INVOICE_LIMIT", catalog.SEARCH_RESULT_LIMIT)
    if term:
        results = catalog.search_invoices(term, limit=limit)
    else:
        results = catalog.recent_invoices(limit)
    return jsonify(
        {
            "invoices": [invoice.to_dict(include_items=False) for invoice in results],
            "search": term,
        }
    )


@bp.get("/invoices/<int:invoice_id>")
@require_admin
def invoice_detail(invoice_id: int):
    invoice = get_invoice(invoice_id)
    if invoice is None:
        abort(404, description="Invoice not found")
    payload = invoice.to_dict()
    payload.update(reporting.invoice_totals(invoice))
    return jsonify({"invoice": payload})


@bp.get("/invoices/<int:invoice_id>/print")
@require_admin
def print_invoice(invoice_id: int):
    invoice = get_invoice(invoice_id)
    if invoice is None:
        abort(404, description="Invoice not found")
    payload = invoice.to_dict()
    payload.update(reporting.invoice_totals(invoice))
    return jsonify({"invoice": payload, "printed_at": datetime.utcnow().isoformat()})


@bp.get("/inventory")
@require_admin
def inventory():
    return jsonify(
        {
            "medicines": [medicine.to_dict() for medicine in catalog.list_medicines()],
            "low_stock": [
                medicine.to_dict() for medicine in stock_ledger.low_stock_medicines()
            ],
            "expired": [medicine.to_dict() for medicine in stock_ledger.expired_medicines()],
        }
    )


@bp.route("/profile", methods=["GET", "POST"])
@require_admin
def profile():
    if request.method == "GET":
        return jsonify({"user": current_user.to_dict()})

    payload, errors = parse_profile_form(request_payload())
    if errors:
        return _error(errors[0])

    try:
        accounts.update_account(
            current_user._get_current_object(),
            full_name=payload.full_name,
            email=payload.email,
            mobile=payload.mobile,
            address=payload.address,
        )
    except PharmacyError as exc:
        return _error(str(exc), 409)

    return jsonify(
        {
            "success": True,
            "message": "Profile updated successfully",
            "user": current_user.to_dict(),
        }
    )
