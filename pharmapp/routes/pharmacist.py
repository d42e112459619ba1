from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user

from pharmapp.forms import (
    parse_date_range,
    parse_profile_form,
    parse_sale_form,
    request_payload,
)
from pharmapp.security import require_pharmacist
from pharmapp.services import accounts, catalog, reporting, stock_ledger
from pharmapp.services.errors import PharmacyError
from pharmapp.services.sales import create_invoice, get_invoice

bp = Blueprint("pharmacist", __name__, url_prefix="/pharmacist")

MIN_SEARCH_LENGTH = 2


def _error(message: str, status_code: int = 400):
    return jsonify({"success": False, "message": message}), status_code


@bp.get("/dashboard")
@require_pharmacist
def dashboard():
    limit = current_app.config.get("RECENT_INVOICE_LIMIT", catalog.SEARCH_RESULT_LIMIT)
    return jsonify(
        {
            "stats": reporting.pharmacist_dashboard_stats(current_user.id),
            "recent_invoices": [
                invoice.to_dict(include_items=False)
                for invoice in catalog.recent_invoices(
                    min(limit, 5), pharmacist_id=current_user.id
                )
            ],
        }
    )


@bp.get("/inventory")
@require_pharmacist
def inventory():
    term = (request.args.get("search") or "").strip()
    medicines = catalog.search_medicines(term) if term else catalog.list_medicines()
    return jsonify(
        {
            "medicines": [medicine.to_dict() for medicine in medicines],
            "low_stock": [
                medicine.to_dict() for medicine in stock_ledger.low_stock_medicines()
            ],
            "search": term,
        }
    )


@bp.get("/api/medicines/search")
@require_pharmacist
def search_medicines():
    term = (request.args.get("q") or "").strip()
    if len(term) < MIN_SEARCH_LENGTH:
        return jsonify([])
    return jsonify([medicine.to_dict() for medicine in catalog.search_medicines(term)])


@bp.post("/sales/invoice")
@require_pharmacist
def create_sale_invoice():
    sale, errors = parse_sale_form(request_payload())
    if errors:
        return _error(errors[0])

    result = create_invoice(sale, current_user.id)
    if result.success:
        return jsonify(result.to_response())

    # Rejections carry their reasons; storage failures only the generic message.
    status_code = 400 if result.errors else 500
    return jsonify(result.to_response()), status_code


@bp.get("/invoices")
@require_pharmacist
def invoices():
    term = (request.args.get("search") or "").strip()
    limit = current_app.config.get("RECENT_INVOICE_LIMIT", catalog.SEARCH_RESULT_LIMIT)
    if term:
        results = catalog.search_invoices(term, pharmacist_id=current_user.id, limit=limit)
    else:
        results = catalog.recent_invoices(limit, pharmacist_id=current_user.id)
    return jsonify(
        {
            "invoices": [invoice.to_dict(include_items=False) for invoice in results],
            "search": term,
        }
    )


@bp.get("/invoices/<int:invoice_id>")
@require_pharmacist
def invoice_detail(invoice_id: int):
    invoice = get_invoice(invoice_id)
    if invoice is None:
        abort(404, description="Invoice not found")
    if invoice.pharmacist_id != current_user.id:
        abort(403, description="Access denied")

    payload = invoice.to_dict()
    payload.update(reporting.invoice_totals(invoice))
    return jsonify({"invoice": payload})


@bp.get("/reports")
@require_pharmacist
def reports():
    date_from, date_to, errors = parse_date_range(request.args)
    if errors:
        return _error(errors[0])

    sales_data: list[dict] = []
    if date_from and date_to:
        sales_data = reporting.sales_by_date_range(date_from, date_to, current_user.id)

    return jsonify(
        {
            "sales_data": sales_data,
            "total_stats": reporting.sales_stats(current_user.id, date_from, date_to),
            "filters": {
                "date_from": date_from.isoformat() if date_from else None,
                "date_to": date_to.isoformat() if date_to else None,
            },
        }
    )


@bp.route("/profile", methods=["GET", "POST"])
@require_pharmacist
def profile():
    if request.method == "GET":
        return jsonify(
            {
                "user": current_user.to_dict(),
                "sales": reporting.sales_stats(pharmacist_id=current_user.id),
            }
        )

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
