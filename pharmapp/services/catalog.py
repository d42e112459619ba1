from __future__ import annotations

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import joinedload

from pharmapp.extensions import db
from pharmapp.models import Company, Invoice, Medicine, RecordStatus, User, UserRole

SEARCH_RESULT_LIMIT = 20


def _pattern(term: str) -> str:
    return f"%{term.strip().lower()}%"


def list_companies() -> list[Company]:
    return Company.active().order_by(Company.company_name.asc()).all()


def companies_with_medicine_count() -> list[dict[str, object]]:
    rows = (
        db.session.query(Company, func.count(Medicine.id))
        .outerjoin(
            Medicine,
            and_(
                Medicine.company_id == Company.id,
                Medicine.status == RecordStatus.ACTIVE,
            ),
        )
        .filter(Company.status == RecordStatus.ACTIVE)
        .group_by(Company.id)
        .order_by(Company.company_name.asc())
        .all()
    )
    results = []
    for company, medicine_count in rows:
        payload = company.to_dict()
        payload["medicine_count"] = int(medicine_count or 0)
        results.append(payload)
    return results


def search_companies(term: str) -> list[Company]:
    pattern = _pattern(term)
    return (
        Company.active()
        .filter(
            or_(
                func.lower(Company.company_name).like(pattern),
                func.lower(Company.contact_person).like(pattern),
                func.lower(Company.company_email).like(pattern),
            )
        )
        .order_by(Company.company_name.asc())
        .all()
    )


def list_medicines() -> list[Medicine]:
    return (
        Medicine.active()
        .options(joinedload(Medicine.company))
        .order_by(Medicine.medicine_name.asc())
        .all()
    )


def medicines_by_company(company_id: int) -> list[Medicine]:
    return (
        Medicine.active()
        .filter(Medicine.company_id == company_id)
        .order_by(Medicine.medicine_name.asc())
        .all()
    )


def search_medicines(term: str) -> list[Medicine]:
    pattern = _pattern(term)
    return (
        Medicine.active()
        .outerjoin(Company, Medicine.company_id == Company.id)
        .options(joinedload(Medicine.company))
        .filter(
            or_(
                func.lower(Medicine.medicine_name).like(pattern),
                func.lower(Medicine.generic_name).like(pattern),
                func.lower(Company.company_name).like(pattern),
            )
        )
        .order_by(Medicine.medicine_name.asc())
        .all()
    )


def list_pharmacists() -> list[User]:
    return (
        User.query.filter(User.role == UserRole.PHARMACIST)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )


def active_pharmacists() -> list[User]:
    return (
        User.active()
        .filter(User.role == UserRole.PHARMACIST)
        .order_by(User.full_name.asc())
        .all()
    )


def recent_invoices(
    limit: int = SEARCH_RESULT_LIMIT, pharmacist_id: int | None = None
) -> list[Invoice]:
    query = Invoice.query.options(joinedload(Invoice.pharmacist))
    if pharmacist_id is not None:
        query = query.filter(Invoice.pharmacist_id == pharmacist_id)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()


def search_invoices(
    term: str,
    *,
    pharmacist_id: int | None = None,
    limit: int = SEARCH_RESULT_LIMIT,
) -> list[Invoice]:
    pattern = _pattern(term)
    query = Invoice.query.options(joinedload(Invoice.pharmacist)).filter(
        or_(
            func.lower(Invoice.invoice_number).like(pattern),
            func.lower(Invoice.customer_mobile).like(pattern),
        )
    )
    if pharmacist_id is not None:
        query = query.filter(Invoice.pharmacist_id == pharmacist_id)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()
