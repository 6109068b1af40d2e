"""
Prélèvements - Modèles SEPA (créancier, lot d'export, actions)
"""

import re
from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

IBAN_PATTERN = re.compile(r'^[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}$')
BIC_PATTERN = re.compile(r'^[A-Z]{4}[A-Z]{2}[A-Z0-9]{2}([A-Z0-9]{3})?$')
SEPA_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9/\-?:().,'+ ]{1,35}$")


def normalize_iban(iban: str) -> str:
    """Supprime espaces/tirets et passe en majuscules"""
    return re.sub(r'[\s-]', '', iban or '').upper()


def is_valid_iban(iban: str) -> bool:
    """Format + clé de contrôle ISO 13616 (mod 97)"""
    if not iban or not IBAN_PATTERN.match(iban):
        return False
    rearranged = iban[4:] + iban[:4]
    digits = ''.join(str(int(ch, 36)) for ch in rearranged)
    return int(digits) % 97 == 1


def is_valid_sepa_identifier(value: str) -> bool:
    """Identifiant (RUM, ...) limité au jeu latin SEPA, 1 à 35 caractères, sans espace en bordure"""
    return bool(value) and value == value.strip() and bool(SEPA_IDENTIFIER_PATTERN.match(value))


def normalize_bic(bic: str) -> str:
    return re.sub(r'\s', '', bic or '').upper()


def is_valid_bic(bic: str) -> bool:
    return bool(bic) and bool(BIC_PATTERN.match(bic))


class CreditorProfile(BaseModel):
    """
    Identité du créancier SEPA (singleton du tenant).
    Validé au chargement: un setting stocké invalide lève une ValidationError.
    """
    ics: str = ""
    name: str = ""
    iban: str = ""
    bic: str = ""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("ics")
    @classmethod
    def validate_ics(cls, v):
        v = re.sub(r'\s', '', v or '').upper()
        if len(v) > 35:
            raise ValueError("L'ICS est limité à 35 caractères")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return (v or "").strip()

    @field_validator("iban")
    @classmethod
    def validate_iban(cls, v):
        v = normalize_iban(v)
        if v and not is_valid_iban(v):
            raise ValueError(f"IBAN créancier invalide: {v}")
        return v

    @field_validator("bic")
    @classmethod
    def validate_bic(cls, v):
        v = normalize_bic(v)
        if v and not is_valid_bic(v):
            raise ValueError(f"BIC créancier invalide: {v}")
        return v

    @property
    def missing_fields(self) -> List[str]:
        return [f for f in ("ics", "name", "iban", "bic") if not getattr(self, f)]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields


class ExportBatch(BaseModel):
    """Lot d'export éphémère: factures choisies + date de prélèvement demandée"""
    invoice_ids: List[str] = Field(min_length=1)
    requested_collection_date: Optional[date] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("invoice_ids")
    @classmethod
    def dedupe_ids(cls, v):
        return list(dict.fromkeys(i for i in v if i))


class PrelevementActionType(str, Enum):
    MARK_EXPORTED = "mark_exported"
    MARK_PAID = "mark_paid"


class PrelevementAction(BaseModel):
    invoice_ids: List[str] = Field(min_length=1)
    action: PrelevementActionType
    message_id: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("invoice_ids")
    @classmethod
    def dedupe_ids(cls, v):
        return list(dict.fromkeys(i for i in v if i))


class PrelevementInvoice(BaseModel):
    """Ligne de la liste des prélèvements"""
    id: str
    invoice_number: str
    client_id: str
    client_name: str = ""
    client_email: Optional[str] = None
    client_iban: Optional[str] = None
    client_bic: Optional[str] = None
    sepa_mandate: Optional[str] = None
    sepa_mandate_date: Optional[str] = None
    sepa_sequence_type: str = "RCUR"
    amount: float
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    debit_date: Optional[str] = None
    status: str
    sepa_status: str
    has_valid_sepa_info: bool

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
