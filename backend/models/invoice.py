"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Prélèvements - Modèle Facture                                               ║
║                                                                              ║
║  DEUX CYCLES DE VIE INDÉPENDANTS:                                            ║
║  - status       : cycle de facturation (draft → sent → paid)                 ║
║  - sepa_status  : cycle du prélèvement (pending → exported → executed)       ║
║                                                                              ║
║  RÈGLE: sepa_status n'existe que pour payment_method = "prelevement"         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    OVERDUE = "overdue"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    VIREMENT = "virement"
    PRELEVEMENT = "prelevement"
    CARTE = "carte"
    CHEQUE = "cheque"
    ESPECES = "especes"


class SepaStatus(str, Enum):
    """
    Statut du prélèvement d'une facture.
    executed = prélèvement confirmé par la banque (facture payée).
    """
    PENDING = "pending"
    EXPORTED = "exported"
    EXECUTED = "executed"


class SequenceType(str, Enum):
    FRST = "FRST"   # Premier prélèvement d'un mandat récurrent
    RCUR = "RCUR"   # Prélèvement récurrent
    OOFF = "OOFF"   # Prélèvement ponctuel
    FNAL = "FNAL"   # Dernier prélèvement du mandat


SEPA_STATUS_LABELS = {
    SepaStatus.PENDING: "En attente",
    SepaStatus.EXPORTED: "Exportés",
    SepaStatus.EXECUTED: "Exécutés",
}

SEPA_STATUS_COLORS = {
    SepaStatus.PENDING: "#F59E0B",
    SepaStatus.EXPORTED: "#3B82F6",
    SepaStatus.EXECUTED: "#10B981",
}


def sepa_status_label(status: SepaStatus) -> str:
    """Libellé opérateur d'un statut. Lève KeyError si le statut n'est pas mappé."""
    return SEPA_STATUS_LABELS[SepaStatus(status)]


def sepa_status_color(status: SepaStatus) -> str:
    return SEPA_STATUS_COLORS[SepaStatus(status)]


class InvoiceLine(BaseModel):
    description: str
    quantity: float = 1.0
    unit_price_ht: float
    vat_rate: float = 20.0

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InvoiceCreate(BaseModel):
    """Création d'une facture"""
    client_id: str
    items: List[InvoiceLine] = Field(min_length=1)
    payment_method: PaymentMethod = PaymentMethod.VIREMENT
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    debit_date: Optional[date] = None  # Date de prélèvement souhaitée
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: Optional[str] = ""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("status")
    @classmethod
    def validate_initial_status(cls, v):
        if v in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            raise ValueError(f"Statut initial invalide: {v.value}")
        return v
