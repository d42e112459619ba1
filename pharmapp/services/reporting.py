"""Read-only sales rollups for dashboards and reports."""

from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import func

from pharmapp.extensions import db
from pharmapp.models import Company, Invoice, Medicine, User, UserRole
from pharmapp.services.stock_ledger import low_stock_medicines


def _apply_filters(query, pharmacist_id=None, date_from=None, date_to=None):
    if pharmacist_id:
        query = query.filter(Invoice.pharmacist_id == pharmacist_id)
    if date_from:
        query = query.filter(Invoice.invoice_date >= date_from)
    if date_to:
        query = query.filter(Invoice.invoice_date <= date_to)
    return query


def sales_stats(
    pharmacist_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict[str, float | int]:
    query = db.session.query(
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.final_amount), 0),
        func.avg(Invoice.final_amount),
    )
    total_invoices, total_sales, average_sale = _apply_filters(
        query, pharmacist_id, date_from, date_to
    ).one()
    return {
        "total_invoices": int(total_invoices or 0),
        "total_sales": float(total_sales or 0),
        "average_sale": round(float(average_sale or 0), 2),
    }


def today_sales(pharmacist_id: int | None = None, today: date | None = None):
    today = today or date.today()
    return sales_stats(pharmacist_id, today, today)


def yesterday_sales(pharmacist_id: int | None = None, today: date | None = None):
    yesterday = (today or date.today()) - timedelta(days=1)
    return sales_stats(pharmacist_id, yesterday, yesterday)


def last_7_days_sales(pharmacist_id: int | None = None, today: date | None = None):
    today = today or date.today()
    return sales_stats(pharmacist_id, today - timedelta(days=7), today)


def sales_by_date_range(
    date_from: date,
    date_to: date,
    pharmacist_id: int | None = None,
) -> list[dict[str, object]]:
    query = db.session.query(
        Invoice.invoice_date,
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.final_amount), 0),
    )
    rows = (
        _apply_filters(query, pharmacist_id, date_from, date_to)
        .group_by(Invoice.invoice_date)
        .order_by(Invoice.invoice_date.desc())
        .all()
    )
    return [
        {
            "sale_date": sale_date.isoformat(),
            "total_invoices": int(count or 0),
            "total_sales": float(total or 0),
        }
        for sale_date, count, total in rows
    ]


def user_counts_by_role() -> dict[str, int]:
    counts = {role: 0 for role in UserRole.ALL_ROLES}
    rows = (
        User.active()
        .with_entities(User.role, func.count(User.id))
        .group_by(User.role)
        .all()
    )
    for role, count in rows:
        counts[role] = int(count)
    return counts


def admin_dashboard_stats(today: date | None = None) -> dict[str, object]:
    return {
        "pharmacists": user_counts_by_role()[UserRole.PHARMACIST],
        "companies": Company.active().count(),
        "medicines": Medicine.active().count(),
        "today_sales": today_sales(today=today)["total_sales"],
        "yesterday_sales": yesterday_sales(today=today)["total_sales"],
        "last7days_sales": last_7_days_sales(today=today)["total_sales"],
        "total_invoices": sales_stats()["total_invoices"],
        "low_stock_count": len(low_stock_medicines()),
    }


def pharmacist_dashboard_stats(pharmacist_id: int, today: date | None = None) -> dict[str, object]:
    today_stats = today_sales(pharmacist_id, today=today)
    overall = sales_stats(pharmacist_id)
    return {
        "today_sales": today_stats["total_sales"],
        "today_invoices": today_stats["total_invoices"],
        "yesterday_sales": yesterday_sales(pharmacist_id, today=today)["total_sales"],
        "last7days_sales": last_7_days_sales(pharmacist_id, today=today)["total_sales"],
        "total_sales": overall["total_sales"],
        "total_invoices": overall["total_invoices"],
        "low_stock_count": len(low_stock_medicines()),
    }


def invoice_totals(invoice: Invoice) -> dict[str, float]:
    """Presentation totals shown on invoice detail screens."""

    sub_total = float(invoice.total_amount or 0)
    discount_amount = float(invoice.discount_amount or 0)
    discount_percentage = 0.0
    if sub_total > 0:
        discount_percentage = round(discount_amount / sub_total * 100, 2)
    return {
        "sub_total": sub_total,
        "discount_amount": discount_amount,
        "discount_percentage": discount_percentage,
        "grand_total": float(invoice.final_amount or 0),
    }
