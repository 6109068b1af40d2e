"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Prélèvements - Modèle Client                                                ║
║                                                                              ║
║  PROFIL SEPA COMPLET = iban + bic + sepa_mandate + sepa_mandate_date         ║
║  Sans profil complet, aucune facture du client n'est prélevable.            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import date
from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
import re

from .invoice import SequenceType
from .sepa import normalize_iban, is_valid_iban, normalize_bic, is_valid_bic, is_valid_sepa_identifier


def is_valid_email_format(email: str) -> bool:
    """Vérifie le format email basique"""
    if not email:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


class ClientSepaProfile(BaseModel):
    """Coordonnées bancaires et mandat de prélèvement d'un client"""
    iban: Optional[str] = None
    bic: Optional[str] = None
    sepa_mandate: Optional[str] = None  # RUM
    sepa_mandate_date: Optional[date] = None
    sepa_sequence_type: SequenceType = SequenceType.RCUR

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("iban")
    @classmethod
    def validate_iban(cls, v):
        if not v:
            return None
        iban = normalize_iban(v)
        if not is_valid_iban(iban):
            raise ValueError(f"IBAN invalide: {v}")
        return iban

    @field_validator("bic")
    @classmethod
    def validate_bic(cls, v):
        if not v:
            return None
        bic = normalize_bic(v)
        if not is_valid_bic(bic):
            raise ValueError(f"BIC invalide: {v}")
        return bic

    @field_validator("sepa_mandate")
    @classmethod
    def validate_mandate(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip()
        if len(v) > 35:
            raise ValueError("La référence de mandat (RUM) est limitée à 35 caractères")
        if not is_valid_sepa_identifier(v):
            raise ValueError(f"Caractères non autorisés dans la référence de mandat (RUM): {v}")
        return v


class ClientCreate(BaseModel):
    """Création d'un client"""
    company_name: str
    email: str
    contact_name: Optional[str] = ""
    phone: Optional[str] = ""
    sepa: Optional[ClientSepaProfile] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if not is_valid_email_format(v):
            raise ValueError(f"Format email invalide: {v}")
        return v
