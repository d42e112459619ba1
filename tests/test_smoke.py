import os
import sys

import pytest
from flask.cli import routes_command

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from pharmapp import create_app
from pharmapp.extensions import db
from pharmapp.models import (
    Company,
    Medicine,
    MovementType,
    ReferenceType,
    StockMovement,
    User,
    UserRole,
)


def _make_app():
    return create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"})


@pytest.fixture
def app():
    app = _make_app()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def test_app_factory_smoke():
    app = _make_app()
    assert app is not None
    assert app.config["DATABASE_AVAILABLE"] is True


def test_blueprints_registered():
    app = _make_app()
    for name in ["auth", "admin", "pharmacist", "health", "errors"]:
        assert name in app.blueprints


def test_critical_routes_return_ok():
    app = _make_app()
    client = app.test_client()

    root_response = client.get("/", follow_redirects=False)
    assert root_response.status_code == 200
    assert root_response.get_json()["authenticated"] is False
    assert root_response.get_json()["login_url"] == "/auth/login"

    health_response = client.get("/health/db")
    assert health_response.status_code == 200
    assert health_response.get_json()["status"] == "UP"


def test_responses_carry_request_id():
    app = _make_app()
    client = app.test_client()

    first = client.get("/health/db")
    second = client.get("/health/db")

    assert len(first.headers["X-Request-ID"]) == 12
    assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]


def test_unknown_route_returns_json_404():
    app = _make_app()
    client = app.test_client()

    response = client.get("/does-not-exist")

    assert response.status_code == 404
    assert response.get_json()["path"] == "/does-not-exist"


def test_flask_routes_listed():
    app = _make_app()
    runner = app.test_cli_runner()
    result = runner.invoke(routes_command)
    assert result.exit_code == 0
    assert "/pharmacist/sales/invoice" in result.output


def test_seed_demo_loads_catalog_through_ledger(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["seed-demo"])

    assert result.exit_code == 0, result.output
    assert "Medicines created: 5" in result.output
    assert Company.query.count() == 3
    assert Medicine.query.count() == 5
    pharmacist = User.query.filter_by(email="pharmacist@pharmacy.com").one()
    assert pharmacist.role == UserRole.PHARMACIST

    paracetamol = Medicine.query.filter_by(medicine_name="Paracetamol 500mg").one()
    assert paracetamol.quantity_in_stock == 100
    movement = StockMovement.query.filter_by(medicine_id=paracetamol.id).one()
    assert movement.movement_type == MovementType.IN
    assert movement.reference_type == ReferenceType.PURCHASE


def test_seed_demo_is_idempotent(app):
    runner = app.test_cli_runner()
    runner.invoke(args=["seed-demo"])

    result = runner.invoke(args=["seed-demo"])

    assert result.exit_code == 0, result.output
    assert "Medicines created: 0" in result.output
    assert Medicine.query.count() == 5
    assert StockMovement.query.count() == 5


def test_create_pharmacist_command(app):
    runner = app.test_cli_runner()
    args = [
        "create-pharmacist",
        "--full-name",
        "Rita Pharmacist",
        "--email",
        "Rita@Pharmacy.com",
        "--mobile",
        "8111111111",
        "--password",
        "rita12345",
    ]

    result = runner.invoke(args=args)

    assert result.exit_code == 0, result.output
    user = User.query.filter_by(email="rita@pharmacy.com").one()
    assert user.check_password("rita12345")

    duplicate = runner.invoke(args=args)
    assert duplicate.exit_code == 1
    assert "Could not create pharmacist" in duplicate.output
