"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Prélèvements - Models Package                                               ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import SepaStatus, ClientCreate, ExportBatch, etc.              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Facture
from .invoice import (
    InvoiceStatus,
    PaymentMethod,
    SepaStatus,
    SequenceType,
    SEPA_STATUS_LABELS,
    SEPA_STATUS_COLORS,
    sepa_status_label,
    sepa_status_color,
    InvoiceLine,
    InvoiceCreate,
)

# SEPA
from .sepa import (
    normalize_iban,
    is_valid_iban,
    normalize_bic,
    is_valid_bic,
    is_valid_sepa_identifier,
    CreditorProfile,
    ExportBatch,
    PrelevementActionType,
    PrelevementAction,
    PrelevementInvoice,
)

# Client
from .client import (
    is_valid_email_format,
    ClientSepaProfile,
    ClientCreate,
)

__all__ = [
    # Facture
    "InvoiceStatus",
    "PaymentMethod",
    "SepaStatus",
    "SequenceType",
    "SEPA_STATUS_LABELS",
    "SEPA_STATUS_COLORS",
    "sepa_status_label",
    "sepa_status_color",
    "InvoiceLine",
    "InvoiceCreate",
    # SEPA
    "normalize_iban",
    "is_valid_iban",
    "normalize_bic",
    "is_valid_bic",
    "is_valid_sepa_identifier",
    "CreditorProfile",
    "ExportBatch",
    "PrelevementActionType",
    "PrelevementAction",
    "PrelevementInvoice",
    # Client
    "is_valid_email_format",
    "ClientSepaProfile",
    "ClientCreate",
]
