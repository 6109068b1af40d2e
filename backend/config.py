"""
Configuration et utilitaires partagés
"""

import os
from datetime import date, datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'prelevements')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Créancier SEPA par défaut (surchargé par le setting "sepa_creditor")
SEPA_CREDITOR_DEFAULTS = {
    "ics": os.environ.get('SEPA_CREDITOR_ICS', ''),
    "name": os.environ.get('SEPA_CREDITOR_NAME', ''),
    "iban": os.environ.get('SEPA_CREDITOR_IBAN', ''),
    "bic": os.environ.get('SEPA_CREDITOR_BIC', ''),
}

# Délais de présentation (jours ouvrés avant l'échéance)
SEPA_FIRST_LEAD_DAYS = int(os.environ.get('SEPA_FIRST_LEAD_DAYS', '5'))
SEPA_RECURRING_LEAD_DAYS = int(os.environ.get('SEPA_RECURRING_LEAD_DAYS', '2'))


# ==================== HELPERS ====================

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()


def today() -> date:
    """Date du jour (UTC)"""
    return datetime.now(timezone.utc).date()


def parse_date(value) -> date | None:
    """
    Convertit une valeur stockée (ISO date, ISO datetime, date) en date.
    Retourne None si vide ou illisible.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None
