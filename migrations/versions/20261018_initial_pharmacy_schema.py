"""Create the pharmacy schema.

Revision ID: 20261018_initial_pharmacy_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial_pharmacy_schema"
down_revision = None
branch_labels = None
depends_on = None


USER_ROLE = sa.Enum("admin", "pharmacist", name="user_role")
MEDICINE_TYPE = sa.Enum(
    "tablet", "capsule", "syrup", "injection", "cream", "drops", "other",
    name="medicine_type",
)
PAYMENT_METHOD = sa.Enum("cash", "card", "upi", "other", name="payment_method")
MOVEMENT_TYPE = sa.Enum("in", "out", "adjustment", name="movement_type")
REFERENCE_TYPE = sa.Enum("purchase", "sale", "adjustment", "return", name="reference_type")


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now())
        )
    return columns


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=100), nullable=False, unique=True),
        sa.Column("mobile", sa.String(length=15), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", USER_ROLE, nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("ix_users_status", "users", ["status"])

    op.create_table(
        "password_reset_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token", sa.String(length=255), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_name", sa.String(length=100), nullable=False),
        sa.Column("company_email", sa.String(length=100), nullable=True),
        sa.Column("company_phone", sa.String(length=15), nullable=True),
        sa.Column("company_address", sa.Text(), nullable=True),
        sa.Column("contact_person", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("ix_companies_status", "companies", ["status"])

    op.create_table(
        "medicines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("medicine_name", sa.String(length=100), nullable=False),
        sa.Column("generic_name", sa.String(length=100), nullable=True),
        sa.Column(
            "company_id",
            sa.Integer(),
            sa.ForeignKey("companies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("medicine_type", MEDICINE_TYPE, nullable=False),
        sa.Column("buying_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("selling_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity_in_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("batch_number", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint("buying_price >= 0", name="ck_medicines_buying_price"),
        sa.CheckConstraint("selling_price >= 0", name="ck_medicines_selling_price"),
    )
    op.create_index("idx_medicines_name", "medicines", ["medicine_name"])
    op.create_index("ix_medicines_company_id", "medicines", ["company_id"])
    op.create_index("ix_medicines_status", "medicines", ["status"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(length=50), nullable=False),
        sa.Column("customer_name", sa.String(length=100), nullable=True),
        sa.Column("customer_mobile", sa.String(length=15), nullable=True),
        sa.Column("customer_address", sa.Text(), nullable=True),
        sa.Column(
            "pharmacist_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("final_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=False, server_default="cash"),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        sa.CheckConstraint("total_amount >= 0", name="ck_invoices_total_amount"),
        sa.CheckConstraint("discount_amount >= 0", name="ck_invoices_discount_amount"),
        sa.CheckConstraint("final_amount >= 0", name="ck_invoices_final_amount"),
    )
    op.create_index("idx_invoices_date", "invoices", ["invoice_date"])
    op.create_index("idx_invoices_mobile", "invoices", ["customer_mobile"])
    op.create_index("ix_invoices_pharmacist_id", "invoices", ["pharmacist_id"])

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "invoice_id",
            sa.Integer(),
            sa.ForeignKey("invoices.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "medicine_id",
            sa.Integer(),
            sa.ForeignKey("medicines.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        *_timestamps(updated=False),
        sa.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity"),
        sa.CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price"),
    )
    op.create_index("ix_invoice_items_invoice_id", "invoice_items", ["invoice_id"])
    op.create_index("ix_invoice_items_medicine_id", "invoice_items", ["medicine_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "medicine_id",
            sa.Integer(),
            sa.ForeignKey("medicines.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("movement_type", MOVEMENT_TYPE, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reference_type", REFERENCE_TYPE, nullable=False),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_by",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        *_timestamps(updated=False),
    )
    op.create_index("ix_stock_movements_medicine_id", "stock_movements", ["medicine_id"])


def downgrade() -> None:
    op.drop_index("ix_stock_movements_medicine_id", table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_index("ix_invoice_items_medicine_id", table_name="invoice_items")
    op.drop_index("ix_invoice_items_invoice_id", table_name="invoice_items")
    op.drop_table("invoice_items")
    op.drop_index("ix_invoices_pharmacist_id", table_name="invoices")
    op.drop_index("idx_invoices_mobile", table_name="invoices")
    op.drop_index("idx_invoices_date", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_medicines_status", table_name="medicines")
    op.drop_index("ix_medicines_company_id", table_name="medicines")
    op.drop_index("idx_medicines_name", table_name="medicines")
    op.drop_table("medicines")
    op.drop_index("ix_companies_status", table_name="companies")
    op.drop_table("companies")
    op.drop_table("password_reset_tokens")
    op.drop_index("ix_users_status", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (REFERENCE_TYPE, MOVEMENT_TYPE, PAYMENT_METHOD, MEDICINE_TYPE, USER_ROLE):
        enum_type.drop(bind, checkfirst=True)
