from datetime import date
from decimal import Decimal

import click

from .extensions import db
from .models import Company, Medicine, MedicineType, User, UserRole
from .services import accounts, stock_ledger
from .services.errors import PharmacyError

DEMO_COMPANIES = (
    {
        "company_name": "ABC Pharmaceuticals Ltd.",
        "company_email": "contact@abcpharma.com",
        "company_phone": "9876543210",
        "company_address": "123 Medical Street, Healthcare City",
        "contact_person": "John Smith",
    },
    {
        "company_name": "XYZ Medical Corporation",
        "company_email": "info@xyzmedical.com",
        "company_phone": "9876543211",
        "company_address": "456 Pharma Avenue, Medicine Town",
        "contact_person": "Jane Doe",
    },
    {
        "company_name": "HealthCare Industries",
        "company_email": "support@healthcare.com",
        "company_phone": "9876543212",
        "company_address": "789 Wellness Road, Health City",
        "contact_person": "Mike Johnson",
    },
)

# (name, generic, company index, type, buying, selling, opening stock, min level, expiry, batch, description)
DEMO_MEDICINES = (
    ("Paracetamol 500mg", "Acetaminophen", 0, MedicineType.TABLET, "2.50", "3.00", 100, 20,
     date(2027, 12, 31), "PAR001", "Pain reliever and fever reducer"),
    ("Amoxicillin 250mg", "Amoxicillin", 1, MedicineType.CAPSULE, "5.00", "6.50", 50, 15,
     date(2027, 10, 15), "AMX001", "Antibiotic for bacterial infections"),
    ("Cough Syrup 100ml", "Dextromethorphan", 2, MedicineType.SYRUP, "45.00", "55.00", 30, 10,
     date(2027, 8, 20), "CS001", "Cough suppressant syrup"),
    ("Vitamin C 500mg", "Ascorbic Acid", 0, MedicineType.TABLET, "1.50", "2.00", 200, 50,
     date(2028, 6, 30), "VTC001", "Vitamin C supplement"),
    ("Ibuprofen 400mg", "Ibuprofen", 1, MedicineType.TABLET, "3.00", "4.00", 75, 25,
     date(2027, 11, 25), "IBU001", "Anti-inflammatory pain reliever"),
)

DEMO_PHARMACIST = {
    "full_name": "John Pharmacist",
    "email": "pharmacist@pharmacy.com",
    "mobile": "8888888888",
    "password": "pharmacist123",
    "address": "Pharmacist Address",
}


def _seed_companies() -> list[Company]:
    companies = []
    for values in DEMO_COMPANIES:
        company = Company.query.filter_by(company_name=values["company_name"]).first()
        if company is None:
            company = Company(**values)
            db.session.add(company)
        companies.append(company)
    db.session.flush()
    return companies


def _seed_medicines(companies: list[Company], actor_id: int) -> int:
    created = 0
    for (
        name,
        generic_name,
        company_index,
        medicine_type,
        buying_price,
        selling_price,
        opening_stock,
        min_stock_level,
        expiry_date,
        batch_number,
        description,
    ) in DEMO_MEDICINES:
        if Medicine.query.filter_by(medicine_name=name).first() is not None:
            continue
        medicine = Medicine(
            medicine_name=name,
            generic_name=generic_name,
            company_id=companies[company_index].id,
            medicine_type=medicine_type,
            buying_price=Decimal(buying_price),
            selling_price=Decimal(selling_price),
            quantity_in_stock=0,
            min_stock_level=min_stock_level,
            expiry_date=expiry_date,
            batch_number=batch_number,
            description=description,
        )
        db.session.add(medicine)
        db.session.flush()
        stock_ledger.receive_stock(medicine.id, opening_stock, actor_id=actor_id)
        created += 1
    return created


def register_cli(app):
    @app.cli.command("seed-demo")
    def seed_demo() -> None:
        """Load sample companies, medicines and a pharmacist account."""
        admin = User.query.filter_by(role=UserRole.ADMIN).order_by(User.id).first()
        if admin is None:
            click.echo("No administrator account exists; start the app once first.")
            raise SystemExit(1)

        try:
            companies = _seed_companies()
            created = _seed_medicines(companies, admin.id)
            db.session.commit()
        except PharmacyError as exc:
            db.session.rollback()
            click.echo(f"Seeding failed: {exc}")
            raise SystemExit(1)

        click.echo(f"Companies available: {len(companies)}")
        click.echo(f"Medicines created: {created}")

        if User.query.filter_by(email=DEMO_PHARMACIST["email"]).first() is None:
            try:
                accounts.create_pharmacist(**DEMO_PHARMACIST)
            except PharmacyError as exc:
                click.echo(f"Demo pharmacist skipped: {exc}")
            else:
                click.echo(f"Demo pharmacist created: {DEMO_PHARMACIST['email']}")

    @app.cli.command("create-pharmacist")
    @click.option("--full-name", required=True)
    @click.option("--email", required=True)
    @click.option("--mobile", required=True)
    @click.option("--address", default=None)
    @click.password_option()
    def create_pharmacist(full_name, email, mobile, address, password) -> None:
        """Create a pharmacist account."""
        try:
            user = accounts.create_pharmacist(
                full_name=full_name,
                email=email,
                mobile=mobile,
                password=password,
                address=address,
            )
        except PharmacyError as exc:
            click.echo(f"Could not create pharmacist: {exc}")
            raise SystemExit(1)
        click.echo(f"Created pharmacist {user.email} (id {user.id})")
