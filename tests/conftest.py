"""Shared fixtures: sample records, a reportlab base PDF and a Flask test app."""

from datetime import date

import pytest

from generators.facture import build_facture_pdf


@pytest.fixture
def invoice_record() -> dict:
    """Invoice header as produced by ``Invoice.to_record()``."""
    return {
        "invoice_number": "INV-2024-001",
        "issue_date": date(2024, 3, 1),
        "due_date": date(2024, 3, 31),
        "client_name": "Boulangerie Martin",
        "client_email": "contact@boulangerie-martin.fr",
        "client_phone": "01 23 45 67 89",
        "client_address": "5 avenue des Fleurs, 69002 Lyon",
        "client_siret": None,
        "subtotal": 100.0,
        "tax_rate": 20.0,
        "tax_amount": 20.0,
        "total": 120.0,
        "payment_terms": "Paiement à 30 jours",
        "notes": None,
    }


@pytest.fixture
def line_items() -> list[dict]:
    return [
        {"description": "Dépannage", "quantity": 2, "unit_price": 50.0, "vat_rate": 20.0},
    ]


@pytest.fixture
def seller_profile() -> dict:
    """Company profile as produced by ``CompanyProfile.to_record()``."""
    return {
        "company_name": "Plomberie Dupont",
        "full_name": "Jean Dupont",
        "address": "10 rue de la Paix, 75002 Paris",
        "phone": "06 12 34 56 78",
        "email": "jean@plomberie-dupont.fr",
        "account_email": "jean.dupont@example.com",
        "siret": "123 456 789 00012",
        "vat_number": "FR12123456789",
        "iban": "FR76 3000 6000 0112 3456 7890 189",
        "bic": "AGRIFRPP",
    }


@pytest.fixture
def base_pdf() -> bytes:
    """A small visual invoice, rendered the same way the HTTP layer does."""
    return build_facture_pdf(
        issuer_name="Plomberie Dupont",
        issuer_lines=["10 rue de la Paix", "75002 Paris"],
        legal_lines=["SIRET : 12345678900012"],
        bank_lines=["IBAN : FR7630006000011234567890189"],
        recipient_lines=["Boulangerie Martin", "5 avenue des Fleurs", "69002 Lyon"],
        invoice_number="INV-2024-001",
        issue_date=date(2024, 3, 1),
        lines=[{"description": "Dépannage", "quantity": 2, "unit_price": 50.0,
                "vat_rate": 20.0, "total": 100.0}],
        subtotal=100.0,
        tax_amount=20.0,
        total=120.0,
    )


# ── Flask application ───────────────────────────────────────────


@pytest.fixture
def app():
    from app import create_app
    from models import db

    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "FACTURX_PROFILE": "EN16931",
        "FACTURX_CHECK_XSD": False,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def make_user(app):
    """Create a user with an optional company profile; returns the user id."""
    from models import CompanyProfile, User, db

    def _make(username: str, password: str = "secret", profile: dict | None = None) -> int:
        with app.app_context():
            user = User(username=username, email=f"{username}@example.com")
            user.set_password(password)
            db.session.add(user)
            db.session.flush()
            if profile is not None:
                fields = {k: v for k, v in profile.items() if k != "account_email"}
                db.session.add(CompanyProfile(user_id=user.id, **fields))
            db.session.commit()
            return user.id

    return _make


@pytest.fixture
def make_invoice(app):
    """Store an invoice with its lines for a user; returns the invoice id."""
    from models import Invoice, InvoiceItem, db

    def _make(user_id: int, record: dict, items: list[dict]) -> int:
        with app.app_context():
            invoice = Invoice(user_id=user_id, **record)
            for idx, item in enumerate(items):
                invoice.items.append(InvoiceItem(sort_order=idx, **item))
            db.session.add(invoice)
            db.session.commit()
            return invoice.id

    return _make


@pytest.fixture
def client(app, make_user, seller_profile):
    """Test client logged in as ``dupont`` (who owns a complete company profile)."""
    make_user("dupont", profile=seller_profile)
    client = app.test_client()
    response = client.post("/api/auth/login", json={"username": "dupont", "password": "secret"})
    assert response.status_code == 200
    return client
