import os
import re
import sys
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from pharmapp import create_app
from pharmapp.extensions import db
from pharmapp.models import (
    Invoice,
    InvoiceItem,
    Medicine,
    MedicineType,
    MovementType,
    ReferenceType,
    StockMovement,
    User,
    UserRole,
)
from pharmapp.services import sales, stock_ledger
from pharmapp.services.sales import (
    GENERIC_FAILURE_MESSAGE,
    SaleLine,
    SaleRequest,
    create_invoice,
)


@pytest.fixture
def app():
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    database_path = tmp_path / "pharmacy.db"
    app = create_app(
        {"TESTING": True, "SQLALCHEMY_DATABASE_URI": f"sqlite:///{database_path}"}
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def create_pharmacist(email="pat@pharmacy.com", mobile="8888888888"):
    user = User(
        full_name="Pat Pharmacist",
        email=email,
        mobile=mobile,
        role=UserRole.PHARMACIST,
    )
    user.set_password("pharmacist123")
    db.session.add(user)
    db.session.commit()
    return user


def create_medicine(actor_id, name="Paracetamol 500mg", stock=100, price="3.00"):
    medicine = Medicine(
        medicine_name=name,
        generic_name="Acetaminophen",
        medicine_type=MedicineType.TABLET,
        buying_price=Decimal("2.50"),
        selling_price=Decimal(price),
        quantity_in_stock=0,
        min_stock_level=10,
    )
    db.session.add(medicine)
    db.session.flush()
    if stock:
        stock_ledger.receive_stock(medicine.id, stock, actor_id=actor_id)
    db.session.commit()
    return medicine


def build_sale(*lines, discount="0", **overrides):
    sale_lines = []
    for medicine_id, quantity, unit_price in lines:
        unit_price = Decimal(unit_price)
        sale_lines.append(
            SaleLine(
                medicine_id=medicine_id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=unit_price * quantity,
            )
        )
    total = sum((line.total_price for line in sale_lines), Decimal("0"))
    discount = Decimal(discount)
    values = {
        "items": tuple(sale_lines),
        "total_amount": total,
        "discount_amount": discount,
        "final_amount": total - discount,
        "customer_name": "Customer One",
        "customer_mobile": "7777777777",
    }
    values.update(overrides)
    return SaleRequest(**values)


def sale_movements(medicine_id=None):
    query = StockMovement.query.filter_by(
        movement_type=MovementType.OUT, reference_type=ReferenceType.SALE
    )
    if medicine_id is not None:
        query = query.filter_by(medicine_id=medicine_id)
    return query.all()


def test_sale_decrements_stock_and_records_one_movement(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=100)

    result = create_invoice(build_sale((medicine.id, 3, "3.00")), pharmacist.id)

    assert result.success is True
    assert result.message == "Invoice created successfully"
    assert stock_ledger.current_quantity(medicine.id) == 97

    movements = sale_movements(medicine.id)
    assert len(movements) == 1
    movement = movements[0]
    assert movement.quantity == 3
    assert movement.reference_id == result.invoice.id
    assert movement.created_by == pharmacist.id
    assert movement.notes == f"Sale via invoice {result.invoice.invoice_number}"


def test_sale_result_carries_items_and_matching_totals(app):
    pharmacist = create_pharmacist()
    paracetamol = create_medicine(pharmacist.id, name="Paracetamol 500mg", price="3.00")
    vitamin = create_medicine(pharmacist.id, name="Vitamin C 500mg", price="2.00")

    sale = build_sale((paracetamol.id, 3, "3.00"), (vitamin.id, 2, "2.00"), discount="1.50")
    result = create_invoice(sale, pharmacist.id)

    assert result.success is True
    invoice = result.invoice
    assert re.fullmatch(r"INV-\d{8}-001", invoice.invoice_number)
    assert len(invoice.items) == 2
    assert sum(item.total_price for item in invoice.items) == invoice.total_amount
    assert invoice.final_amount == Decimal("11.50")

    payload = invoice.to_dict()
    assert payload["pharmacist_name"] == "Pat Pharmacist"
    assert [item["medicine_name"] for item in payload["items"]] == [
        "Paracetamol 500mg",
        "Vitamin C 500mg",
    ]

    response = result.to_response()
    assert response == {
        "success": True,
        "message": "Invoice created successfully",
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
    }


def test_sequential_sales_of_five_drain_ten_to_zero(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)

    first = create_invoice(build_sale((medicine.id, 5, "3.00")), pharmacist.id)
    second = create_invoice(build_sale((medicine.id, 5, "3.00")), pharmacist.id)

    assert first.success and second.success
    assert stock_ledger.current_quantity(medicine.id) == 0
    assert first.invoice.invoice_number != second.invoice.invoice_number


def test_relative_update_does_not_lose_concurrent_write(file_app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    medicine_id = medicine.id

    # The session now holds a copy reading 10 while another writer sells 5.
    assert db.session.get(Medicine, medicine_id).quantity_in_stock == 10
    with db.engine.begin() as connection:
        connection.execute(
            update(Medicine)
            .where(Medicine.id == medicine_id)
            .values(quantity_in_stock=Medicine.quantity_in_stock - 5)
        )

    result = create_invoice(build_sale((medicine_id, 5, "3.00")), pharmacist.id)

    assert result.success is True
    assert stock_ledger.current_quantity(medicine_id) == 0


def test_same_day_numbers_strictly_increase(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=50)

    numbers = []
    for _ in range(3):
        result = create_invoice(build_sale((medicine.id, 1, "3.00")), pharmacist.id)
        assert result.success
        numbers.append(result.invoice.invoice_number)

    sequences = [int(number.rsplit("-", 1)[-1]) for number in numbers]
    assert sequences == [1, 2, 3]
    assert len(set(numbers)) == 3


def test_identical_payload_twice_creates_two_invoices(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=20)
    sale = build_sale((medicine.id, 4, "3.00"))

    first = create_invoice(sale, pharmacist.id)
    second = create_invoice(sale, pharmacist.id)

    assert first.success and second.success
    assert first.invoice.invoice_number != second.invoice.invoice_number
    assert Invoice.query.count() == 2
    assert stock_ledger.current_quantity(medicine.id) == 12
    assert len(sale_movements(medicine.id)) == 2


def test_empty_items_rejected_before_any_write(app):
    pharmacist = create_pharmacist()

    result = create_invoice(build_sale(), pharmacist.id)

    assert result.success is False
    assert result.message == "At least one item is required."
    assert Invoice.query.count() == 0
    assert StockMovement.query.count() == 0


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({"final_amount": Decimal("8.00")}, "Final amount must equal total minus discount."),
        ({"total_amount": Decimal("10.00")}, "Total amount does not match the sum of the items."),
        ({"payment_method": "cheque"}, "Unsupported payment method."),
    ],
)
def test_inconsistent_header_rejected(app, overrides, expected):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)

    result = create_invoice(build_sale((medicine.id, 3, "3.00"), **overrides), pharmacist.id)

    assert result.success is False
    assert result.message == expected
    assert Invoice.query.count() == 0
    assert stock_ledger.current_quantity(medicine.id) == 10


def test_line_total_mismatch_rejected(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    line = SaleLine(
        medicine_id=medicine.id,
        quantity=2,
        unit_price=Decimal("3.00"),
        total_price=Decimal("5.00"),
    )
    sale = SaleRequest(
        items=(line,), total_amount=Decimal("5.00"), final_amount=Decimal("5.00")
    )

    result = create_invoice(sale, pharmacist.id)

    assert result.success is False
    assert "does not match" in result.message
    assert stock_ledger.current_quantity(medicine.id) == 10


def test_sub_cent_unit_price_rejected(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    line = SaleLine(
        medicine_id=medicine.id,
        quantity=3,
        unit_price=Decimal("0.333"),
        total_price=Decimal("1.00"),
    )
    sale = SaleRequest(
        items=(line,), total_amount=Decimal("1.00"), final_amount=Decimal("1.00")
    )

    result = create_invoice(sale, pharmacist.id)

    assert result.success is False
    assert result.errors == ["Item prices must be given in whole cents."]
    assert InvoiceItem.query.count() == 0
    assert stock_ledger.current_quantity(medicine.id) == 10


@pytest.mark.parametrize("amount", ["1e30", "100000000.00"])
def test_amounts_beyond_column_range_rejected(app, amount):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    value = Decimal(amount)
    sale = SaleRequest(
        items=(
            SaleLine(
                medicine_id=medicine.id, quantity=1, unit_price=value, total_price=value
            ),
        ),
        total_amount=value,
        final_amount=value,
    )

    result = create_invoice(sale, pharmacist.id)

    assert result.success is False
    assert result.message == "Amounts are out of range."
    assert Invoice.query.count() == 0


def test_oversized_quantity_is_a_validation_failure(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    quantity = 10**40
    sale = SaleRequest(
        items=(
            SaleLine(
                medicine_id=medicine.id,
                quantity=quantity,
                unit_price=Decimal("3.00"),
                total_price=Decimal("3.00"),
            ),
        ),
        total_amount=Decimal("3.00"),
        final_amount=Decimal("3.00"),
    )

    result = create_invoice(sale, pharmacist.id)

    assert result.success is False
    assert result.errors
    assert Invoice.query.count() == 0


def test_duplicate_medicine_lines_rejected(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)

    result = create_invoice(
        build_sale((medicine.id, 1, "3.00"), (medicine.id, 2, "3.00")), pharmacist.id
    )

    assert result.success is False
    assert "more than once" in result.message
    assert Invoice.query.count() == 0


def test_inactive_medicine_rejected(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    medicine.deactivate()
    db.session.commit()

    result = create_invoice(build_sale((medicine.id, 1, "3.00")), pharmacist.id)

    assert result.success is False
    assert result.message == f"Medicine {medicine.id} is not available."
    assert Invoice.query.count() == 0


def test_only_active_pharmacists_may_sell(app):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    admin = User.query.filter_by(role=UserRole.ADMIN).first()

    admin_result = create_invoice(build_sale((medicine.id, 1, "3.00")), admin.id)
    pharmacist.deactivate()
    db.session.commit()
    inactive_result = create_invoice(build_sale((medicine.id, 1, "3.00")), pharmacist.id)

    assert admin_result.success is False
    assert inactive_result.success is False
    assert Invoice.query.count() == 0


def test_oversell_aborts_whole_sale(app):
    pharmacist = create_pharmacist()
    plenty = create_medicine(pharmacist.id, name="Vitamin C 500mg", stock=50)
    scarce = create_medicine(pharmacist.id, name="Cough Syrup 100ml", stock=2, price="55.00")

    result = create_invoice(
        build_sale((plenty.id, 5, "3.00"), (scarce.id, 3, "55.00")), pharmacist.id
    )

    assert result.success is False
    assert result.message == "Not enough stock for Cough Syrup 100ml. Requested 3."
    assert Invoice.query.count() == 0
    assert InvoiceItem.query.count() == 0
    assert sale_movements() == []
    assert stock_ledger.current_quantity(plenty.id) == 50
    assert stock_ledger.current_quantity(scarce.id) == 2


def test_backorder_allows_negative_stock(app):
    app.config["ALLOW_BACKORDER"] = True
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=2)

    result = create_invoice(build_sale((medicine.id, 3, "3.00")), pharmacist.id)

    assert result.success is True
    assert stock_ledger.current_quantity(medicine.id) == -1


def test_storage_failure_mid_sale_rolls_everything_back(app, monkeypatch):
    pharmacist = create_pharmacist()
    first = create_medicine(pharmacist.id, name="Paracetamol 500mg", stock=100)
    second = create_medicine(pharmacist.id, name="Ibuprofen 400mg", stock=75, price="4.00")

    original_record = stock_ledger.record_movement
    calls = []

    def failing_record(**kwargs):
        calls.append(kwargs["medicine_id"])
        if len(calls) == 2:
            raise OperationalError("INSERT INTO stock_movements", {}, Exception("disk I/O error"))
        return original_record(**kwargs)

    monkeypatch.setattr(stock_ledger, "record_movement", failing_record)

    result = create_invoice(
        build_sale((first.id, 3, "3.00"), (second.id, 1, "4.00")), pharmacist.id
    )

    assert result.success is False
    assert result.message == GENERIC_FAILURE_MESSAGE
    assert calls == [first.id, second.id]
    assert Invoice.query.count() == 0
    assert InvoiceItem.query.count() == 0
    assert sale_movements() == []
    assert stock_ledger.current_quantity(first.id) == 100
    assert stock_ledger.current_quantity(second.id) == 75


def test_invoice_number_collision_is_retried(app, monkeypatch):
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    taken = create_invoice(build_sale((medicine.id, 1, "3.00")), pharmacist.id)
    taken_number = taken.invoice.invoice_number

    real_next = sales.next_invoice_number
    issued = []

    def racing_next(on_date=None):
        # The first attempt loses the race against the existing invoice.
        number = taken_number if not issued else real_next(on_date)
        issued.append(number)
        return number

    monkeypatch.setattr(sales, "next_invoice_number", racing_next)

    result = create_invoice(build_sale((medicine.id, 2, "3.00")), pharmacist.id)

    assert result.success is True
    assert issued[0] == taken_number
    assert result.invoice.invoice_number == issued[1]
    assert result.invoice.invoice_number != taken_number
    assert Invoice.query.count() == 2
    assert stock_ledger.current_quantity(medicine.id) == 7
    assert len(sale_movements(medicine.id)) == 2


def test_collision_retries_are_bounded(app, monkeypatch):
    app.config["INVOICE_NUMBER_MAX_ATTEMPTS"] = 3
    pharmacist = create_pharmacist()
    medicine = create_medicine(pharmacist.id, stock=10)
    taken = create_invoice(build_sale((medicine.id, 1, "3.00")), pharmacist.id)

    attempts = []

    def always_taken(on_date=None):
        attempts.append(on_date)
        return taken.invoice.invoice_number

    monkeypatch.setattr(sales, "next_invoice_number", always_taken)

    result = create_invoice(build_sale((medicine.id, 1, "3.00")), pharmacist.id)

    assert result.success is False
    assert result.message == GENERIC_FAILURE_MESSAGE
    assert len(attempts) == 3
    assert Invoice.query.count() == 1
    assert stock_ledger.current_quantity(medicine.id) == 9
