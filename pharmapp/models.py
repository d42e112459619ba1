from datetime import date, datetime
from decimal import Decimal

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from pharmapp.extensions import db


def _money(value) -> float:
    if value is None:
        return 0.0
    return float(value)


def _iso(value):
    return value.isoformat() if value is not None else None


class RecordStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"

    ALL_STATUSES = [ACTIVE, INACTIVE]
    LABELS = {
        ACTIVE: "Active",
        INACTIVE: "Inactive",
    }


class UserRole:
    ADMIN = "admin"
    PHARMACIST = "pharmacist"

    ALL_ROLES = [ADMIN, PHARMACIST]


class MedicineType:
    TABLET = "tablet"
    CAPSULE = "capsule"
    SYRUP = "syrup"
    INJECTION = "injection"
    CREAM = "cream"
    DROPS = "drops"
    OTHER = "other"

    ALL_TYPES = [TABLET, CAPSULE, SYRUP, INJECTION, CREAM, DROPS, OTHER]


class PaymentMethod:
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    OTHER = "other"

    ALL_METHODS = [CASH, CARD, UPI, OTHER]


class MovementType:
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"

    ALL_TYPES = [IN, OUT, ADJUSTMENT]


class ReferenceType:
    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RETURN = "return"

    ALL_TYPES = [PURCHASE, SALE, ADJUSTMENT, RETURN]


class StatusMixin:
    """Soft-delete lifecycle shared by users, companies and medicines."""

    status = db.Column(
        db.String(16), nullable=False, default=RecordStatus.ACTIVE, index=True
    )

    @classmethod
    def active(cls):
        return cls.query.filter(cls.status == RecordStatus.ACTIVE)

    @property
    def is_active_record(self) -> bool:
        return self.status == RecordStatus.ACTIVE

    def deactivate(self) -> None:
        self.status = RecordStatus.INACTIVE

    def activate(self) -> None:
        self.status = RecordStatus.ACTIVE


class User(UserMixin, StatusMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(100), unique=True, nullable=False)
    mobile = db.Column(db.String(15), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(*UserRole.ALL_ROLES, name="user_role"), nullable=False)
    address = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    @property
    def is_active(self) -> bool:  # type: ignore[override]
        return self.status == RecordStatus.ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_pharmacist(self) -> bool:
        return self.role == UserRole.PHARMACIST

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def has_role(self, role_name: str) -> bool:
        return self.has_any_role((role_name,))

    def has_any_role(self, role_names) -> bool:
        if not role_names:
            return False
        return self.role in set(role_names)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "mobile": self.mobile,
            "role": self.role,
            "address": self.address,
            "status": self.status,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.email} role={self.role}>"


class PasswordResetToken(db.Model):
    __tablename__ = "password_reset_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token = db.Column(db.String(255), unique=True, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User")

    def is_usable(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return not self.used and self.expires_at > now


class Company(StatusMixin, db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(100), nullable=False)
    company_email = db.Column(db.String(100), nullable=True)
    company_phone = db.Column(db.String(15), nullable=True)
    company_address = db.Column(db.Text, nullable=True)
    contact_person = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    medicines = db.relationship("Medicine", back_populates="company")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "company_email": self.company_email,
            "company_phone": self.company_phone,
            "company_address": self.company_address,
            "contact_person": self.contact_person,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Company {self.company_name}>"


class Medicine(StatusMixin, db.Model):
    __tablename__ = "medicines"

    __table_args__ = (
        db.CheckConstraint("buying_price >= 0", name="ck_medicines_buying_price"),
        db.CheckConstraint("selling_price >= 0", name="ck_medicines_selling_price"),
        db.Index("idx_medicines_name", "medicine_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    medicine_name = db.Column(db.String(100), nullable=False)
    generic_name = db.Column(db.String(100), nullable=True)
    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    medicine_type = db.Column(
        db.Enum(*MedicineType.ALL_TYPES, name="medicine_type"), nullable=False
    )
    buying_price = db.Column(db.Numeric(10, 2), nullable=False)
    selling_price = db.Column(db.Numeric(10, 2), nullable=False)
    # Mutated only through pharmapp.services.stock_ledger.
    quantity_in_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=10)
    expiry_date = db.Column(db.Date, nullable=True)
    batch_number = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    company = db.relationship("Company", back_populates="medicines")

    @property
    def is_low_stock(self) -> bool:
        return (self.quantity_in_stock or 0) <= (self.min_stock_level or 0)

    @property
    def is_expired(self) -> bool:
        return self.is_expired_on(date.today())

    def is_expired_on(self, today: date) -> bool:
        if self.expiry_date is None:
            return False
        return self.expiry_date < today

    @property
    def company_name(self) -> str | None:
        return self.company.company_name if self.company is not None else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "medicine_name": self.medicine_name,
            "generic_name": self.generic_name,
            "company_id": self.company_id,
            "company_name": self.company_name,
            "medicine_type": self.medicine_type,
            "buying_price": _money(self.buying_price),
            "selling_price": _money(self.selling_price),
            "quantity_in_stock": self.quantity_in_stock,
            "min_stock_level": self.min_stock_level,
            "expiry_date": _iso(self.expiry_date),
            "batch_number": self.batch_number,
            "description": self.description,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "is_low_stock": self.is_low_stock,
            "is_expired": self.is_expired,
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Medicine {self.medicine_name} stock={self.quantity_in_stock}>"


class Invoice(db.Model):
    __tablename__ = "invoices"

    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.CheckConstraint("total_amount >= 0", name="ck_invoices_total_amount"),
        db.CheckConstraint("discount_amount >= 0", name="ck_invoices_discount_amount"),
        db.CheckConstraint("final_amount >= 0", name="ck_invoices_final_amount"),
        db.Index("idx_invoices_date", "invoice_date"),
        db.Index("idx_invoices_mobile", "customer_mobile"),
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(50), nullable=False)
    customer_name = db.Column(db.String(100), nullable=True)
    customer_mobile = db.Column(db.String(15), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)
    pharmacist_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0"))
    final_amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_method = db.Column(
        db.Enum(*PaymentMethod.ALL_METHODS, name="payment_method"),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    invoice_date = db.Column(db.Date, nullable=False, default=date.today)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    pharmacist = db.relationship("User")
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    @property
    def pharmacist_name(self) -> str | None:
        return self.pharmacist.full_name if self.pharmacist is not None else None

    def to_dict(self, *, include_items: bool = True) -> dict:
        payload = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_name": self.customer_name,
            "customer_mobile": self.customer_mobile,
            "customer_address": self.customer_address,
            "pharmacist_id": self.pharmacist_id,
            "pharmacist_name": self.pharmacist_name,
            "total_amount": _money(self.total_amount),
            "discount_amount": _money(self.discount_amount),
            "final_amount": _money(self.final_amount),
            "payment_method": self.payment_method,
            "invoice_date": _iso(self.invoice_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_items:
            payload["items"] = [item.to_dict() for item in self.items]
        return payload

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Invoice {self.invoice_number} final={self.final_amount}>"


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"

    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity"),
        db.CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price"),
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    medicine_id = db.Column(
        db.Integer,
        db.ForeignKey("medicines.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity = db.Column(db.Integer, nullable=False)
    # Snapshot of the selling price at sale time.
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    invoice = db.relationship("Invoice", back_populates="items")
    medicine = db.relationship("Medicine")

    def to_dict(self) -> dict:
        medicine = self.medicine
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "medicine_id": self.medicine_id,
            "medicine_name": medicine.medicine_name if medicine else None,
            "generic_name": medicine.generic_name if medicine else None,
            "company_name": medicine.company_name if medicine else None,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "total_price": _money(self.total_price),
        }


class StockMovement(db.Model):
    __tablename__ = "stock_movements"

    id = db.Column(db.Integer, primary_key=True)
    medicine_id = db.Column(
        db.Integer,
        db.ForeignKey("medicines.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    movement_type = db.Column(
        db.Enum(*MovementType.ALL_TYPES, name="movement_type"), nullable=False
    )
    quantity = db.Column(db.Integer, nullable=False)
    reference_type = db.Column(
        db.Enum(*ReferenceType.ALL_TYPES, name="reference_type"), nullable=False
    )
    reference_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    medicine = db.relationship("Medicine")
    creator = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "medicine_id": self.medicine_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }
