"""
Prélèvements - Fixtures de test

La base MongoDB est remplacée par mongomock-motor: chaque test part d'une base vide.
"""

import importlib
import sys
import uuid
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Modules qui font `from config import db`
DB_MODULES = [
    "config",
    "services.settings",
    "services.event_logger",
    "services.sepa_eligibility",
    "services.pain008",
    "services.sepa_state_machine",
    "routes.clients",
    "routes.invoices",
]

# IBAN/BIC valides (exemples publics)
CREDITOR = {
    "ics": "FR12ZZZ123456",
    "name": "Atelier Numérique SARL",
    "iban": "FR1420041010050500013M02606",
    "bic": "PSSTFRPPPAR",
}
DEBTOR_IBAN = "DE89370400440532013000"
DEBTOR_BIC = "COBADEFFXXX"
OTHER_DEBTOR_IBAN = "GB82WEST12345698765432"
OTHER_DEBTOR_BIC = "NWBKGB2L"


@pytest.fixture
def mock_db(monkeypatch):
    """Base mongomock injectée dans tous les modules qui utilisent `db`"""
    db = AsyncMongoMockClient()[f"prelevements_test_{uuid.uuid4().hex[:8]}"]
    for name in DB_MODULES:
        module = importlib.import_module(name)
        monkeypatch.setattr(module, "db", db)
    return db


@pytest.fixture
def app(mock_db):
    from server import app
    return app


def api_client(app) -> AsyncClient:
    """Client HTTP in-process sur l'app FastAPI"""
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def seed_creditor(db, **overrides):
    doc = {"key": "sepa_creditor", **CREDITOR, **overrides}
    await db.settings.insert_one(doc)
    return doc


async def seed_client(db, **overrides):
    client = {
        "id": str(uuid.uuid4()),
        "company_name": "Boulangerie Dupont",
        "email": f"compta-{uuid.uuid4().hex[:6]}@dupont.fr",
        "iban": DEBTOR_IBAN,
        "bic": DEBTOR_BIC,
        "sepa_mandate": f"RUM-{uuid.uuid4().hex[:8].upper()}",
        "sepa_mandate_date": "2023-01-15",
        "sepa_sequence_type": "RCUR",
    }
    client.update(overrides)
    await db.clients.insert_one(dict(client))
    return client


async def seed_invoice(db, client_id, amount=120.00, number=None, **overrides):
    invoice = {
        "id": str(uuid.uuid4()),
        "invoice_number": number or f"FAC-2024-{uuid.uuid4().int % 100000:05d}",
        "client_id": client_id,
        "client_name": "",
        "total_ttc": amount,
        "status": "sent",
        "payment_method": "prelevement",
        "issue_date": "2024-05-01",
        "due_date": "2024-05-31",
        "debit_date": "2024-06-15",
        "sepa_status": "pending",
    }
    invoice.update(overrides)
    await db.invoices.insert_one(dict(invoice))
    return invoice
