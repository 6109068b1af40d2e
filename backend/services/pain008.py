"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Prélèvements - Générateur PAIN.008 (ISO 20022 pain.008.001.02)              ║
║                                                                              ║
║  FORMAT DU FICHIER:                                                          ║
║  Document/CstmrDrctDbtInitn                                                  ║
║    GrpHdr        : MsgId, CreDtTm, NbOfTxs, CtrlSum, InitgPty                ║
║    PmtInf (1..n) : un bloc par (date de prélèvement, type de séquence)       ║
║      DrctDbtTxInf (1..n) : une transaction par facture                       ║
║                                                                              ║
║  RÈGLE TOUT-OU-RIEN:                                                         ║
║  - Une seule facture invalide => aucun fichier, aucune écriture              ║
║  - L'ordre des éléments suit strictement le schéma XSD                       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
import unicodedata
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from lxml import etree
from pydantic import BaseModel, ValidationError

from config import db, today, parse_date, SEPA_FIRST_LEAD_DAYS, SEPA_RECURRING_LEAD_DAYS
from models.invoice import InvoiceStatus, SepaStatus, SequenceType
from models.sepa import (
    CreditorProfile,
    is_valid_bic,
    is_valid_iban,
    is_valid_sepa_identifier,
    normalize_bic,
    normalize_iban,
)
from services.event_logger import log_event
from services.sepa_eligibility import is_direct_debit, load_clients, missing_sepa_fields
from services.settings import get_sepa_creditor

logger = logging.getLogger("pain008")

PAIN_008_NAMESPACE = "urn:iso:std:iso:20022:tech:xsd:pain.008.001.02"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"

CURRENCY = "EUR"
CENT = Decimal("0.01")

# Longueurs maximales (guide EPC)
MAX_ID_LENGTH = 35
MAX_NAME_LENGTH = 70
MAX_REMITTANCE_LENGTH = 140

# Jeu de caractères latin autorisé par le guide EPC
SEPA_ALLOWED_CHARS = re.compile(r"[^A-Za-z0-9/\-?:().,'+ ]")

FIELD_LABELS = {
    "iban": "IBAN",
    "bic": "BIC",
    "sepa_mandate": "référence de mandat (RUM)",
    "sepa_mandate_date": "date de signature du mandat",
}


class SepaValidationError(Exception):
    """
    Lot refusé. `invalid` liste les factures fautives:
    [{"invoiceId", "invoiceNumber", "reasons": [...]}]
    """

    def __init__(self, message: str, invalid: Optional[List[Dict]] = None):
        super().__init__(message)
        self.message = message
        self.invalid = invalid or []


class DirectDebitTransaction(BaseModel):
    invoice_id: str
    invoice_number: str
    end_to_end_id: str
    amount: Decimal
    debtor_name: str
    debtor_iban: str
    debtor_bic: str
    mandate_id: str
    mandate_date: date
    sequence_type: SequenceType
    collection_date: date
    remittance_info: str


class Pain008File(BaseModel):
    filename: str
    content: bytes
    message_id: str
    transaction_count: int
    control_sum: Decimal
    collection_dates: List[date]


# ════════════════════════════════════════════════════════════════════════════
# HELPERS
# ════════════════════════════════════════════════════════════════════════════

def to_amount(value) -> Decimal:
    """Montant en euros arrondi au centime"""
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal) -> str:
    return f"{amount.quantize(CENT, rounding=ROUND_HALF_UP):.2f}"


def sepa_text(value: str, max_length: int) -> str:
    """Translittère vers le jeu latin SEPA et tronque"""
    ascii_value = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    cleaned = SEPA_ALLOWED_CHARS.sub(" ", ascii_value)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned[:max_length]


def add_business_days(start: date, days: int) -> date:
    """Ajoute des jours ouvrés (samedi/dimanche exclus)"""
    current = start
    added = 0
    while added < days:
        current += timedelta(days=1)
        if current.weekday() < 5:
            added += 1
    return current


def minimum_collection_date(sequence_type: SequenceType, today_: date) -> date:
    if SequenceType(sequence_type) in (SequenceType.FRST, SequenceType.OOFF):
        return add_business_days(today_, SEPA_FIRST_LEAD_DAYS)
    return add_business_days(today_, SEPA_RECURRING_LEAD_DAYS)


def collection_date_for(
    sequence_type: SequenceType,
    requested: Optional[date],
    debit_date: Optional[date],
    today_: date,
) -> date:
    """
    Date de prélèvement d'une transaction:
    1. date demandée pour le lot
    2. sinon date de prélèvement de la facture si elle respecte le délai de présentation
    3. sinon la première date possible (aujourd'hui + délai en jours ouvrés)
    """
    if requested:
        return requested
    minimum = minimum_collection_date(sequence_type, today_)
    if debit_date and debit_date >= minimum:
        return debit_date
    return minimum


def new_message_id(created_at: datetime) -> str:
    return f"PRLV-{created_at:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6].upper()}"


def pain008_filename(collection_dates: List[date]) -> str:
    return f"SEPA_DD_{min(collection_dates):%Y%m%d}.xml"


# ════════════════════════════════════════════════════════════════════════════
# VALIDATION (TOUT-OU-RIEN)
# ════════════════════════════════════════════════════════════════════════════

def debtor_name(invoice: Dict, client: Dict) -> str:
    return sepa_text(client.get("company_name") or invoice.get("client_name", ""), MAX_NAME_LENGTH)


def invoice_problems(invoice: Dict, client: Optional[Dict]) -> List[str]:
    """Raisons pour lesquelles une facture ne peut pas être prélevée (vide = OK)"""
    reasons = []

    if not is_direct_debit(invoice):
        reasons.append("mode de paiement différent de prélèvement")
    if invoice.get("status") == InvoiceStatus.CANCELLED.value:
        reasons.append("facture annulée")
    if invoice.get("sepa_status") == SepaStatus.EXECUTED.value:
        reasons.append("prélèvement déjà exécuté")

    if client is None:
        reasons.append("client introuvable")
    else:
        missing = missing_sepa_fields(client)
        if missing:
            labels = ", ".join(FIELD_LABELS[f] for f in missing)
            reasons.append(f"{labels} manquant(s)")
        if not debtor_name(invoice, client):
            reasons.append("nom du débiteur sans caractère latin SEPA")
        if "sepa_mandate" not in missing and not is_valid_sepa_identifier(str(client["sepa_mandate"]).strip()):
            reasons.append("référence de mandat (RUM) hors jeu de caractères SEPA")
        if "iban" not in missing and not is_valid_iban(normalize_iban(client["iban"])):
            reasons.append("IBAN invalide")
        if "bic" not in missing and not is_valid_bic(normalize_bic(client["bic"])):
            reasons.append("BIC invalide")
        if "sepa_mandate_date" not in missing and parse_date(client["sepa_mandate_date"]) is None:
            reasons.append("date de signature du mandat illisible")

    if to_amount(invoice.get("total_ttc")) <= 0:
        reasons.append("montant nul ou négatif")

    return reasons


def build_transactions(
    invoices: List[Dict],
    clients: Dict[str, Dict],
    requested_collection_date: Optional[date],
    today_: date,
) -> List[DirectDebitTransaction]:
    """
    Transforme les factures en transactions.
    Lève SepaValidationError si AU MOINS une facture est invalide.
    """
    invalid = []
    for inv in invoices:
        reasons = invoice_problems(inv, clients.get(inv.get("client_id")))
        if reasons:
            invalid.append({
                "invoiceId": inv["id"],
                "invoiceNumber": inv.get("invoice_number", inv["id"]),
                "reasons": reasons,
            })

    if invalid:
        details = "; ".join(f"{i['invoiceNumber']} ({', '.join(i['reasons'])})" for i in invalid)
        raise SepaValidationError(
            f"Informations SEPA invalides pour {len(invalid)} facture(s): {details}",
            invalid,
        )

    transactions = []
    for inv in invoices:
        client = clients[inv["client_id"]]
        sequence_type = SequenceType(client.get("sepa_sequence_type") or SequenceType.RCUR.value)
        invoice_number = inv.get("invoice_number") or inv["id"]
        transactions.append(DirectDebitTransaction(
            invoice_id=inv["id"],
            invoice_number=invoice_number,
            end_to_end_id=sepa_text(invoice_number, MAX_ID_LENGTH) or "NOTPROVIDED",
            amount=to_amount(inv.get("total_ttc")),
            debtor_name=debtor_name(inv, client),
            debtor_iban=normalize_iban(client["iban"]),
            debtor_bic=normalize_bic(client["bic"]),
            mandate_id=str(client["sepa_mandate"]).strip(),
            mandate_date=parse_date(client["sepa_mandate_date"]),
            sequence_type=sequence_type,
            collection_date=collection_date_for(
                sequence_type, requested_collection_date, parse_date(inv.get("debit_date")), today_
            ),
            remittance_info=sepa_text(f"Facture {invoice_number}", MAX_REMITTANCE_LENGTH),
        ))
    return transactions


# ════════════════════════════════════════════════════════════════════════════
# RENDU XML
# ════════════════════════════════════════════════════════════════════════════

def _q(tag: str) -> str:
    return f"{{{PAIN_008_NAMESPACE}}}{tag}"


def _sub(parent, tag: str, text: Optional[str] = None, **attrib):
    element = etree.SubElement(parent, _q(tag), attrib)
    if text is not None:
        element.text = text
    return element


def _path(parent, tags: str, text: Optional[str] = None):
    """Crée une chaîne d'éléments imbriqués 'A/B/C' et pose le texte sur le dernier"""
    element = parent
    for tag in tags.split("/"):
        element = _sub(element, tag)
    if text is not None:
        element.text = text
    return element


def group_transactions(
    transactions: List[DirectDebitTransaction],
) -> List[Tuple[Tuple[date, SequenceType], List[DirectDebitTransaction]]]:
    """Un groupe par (date de prélèvement, type de séquence), trié par date"""
    groups = defaultdict(list)
    for tx in transactions:
        groups[(tx.collection_date, tx.sequence_type)].append(tx)
    return sorted(groups.items(), key=lambda item: (item[0][0], item[0][1].value))


def render_pain008(
    creditor: CreditorProfile,
    transactions: List[DirectDebitTransaction],
    created_at: datetime,
    message_id: str,
) -> bytes:
    """Sérialise le lot en document pain.008.001.02 (UTF-8, déclaration XML)"""
    root = etree.Element(_q("Document"), nsmap={None: PAIN_008_NAMESPACE, "xsi": XSI_NAMESPACE})
    initiation = _sub(root, "CstmrDrctDbtInitn")

    creditor_name = sepa_text(creditor.name, MAX_NAME_LENGTH)
    control_sum = sum((tx.amount for tx in transactions), Decimal("0"))

    header = _sub(initiation, "GrpHdr")
    _sub(header, "MsgId", message_id)
    _sub(header, "CreDtTm", created_at.strftime("%Y-%m-%dT%H:%M:%S"))
    _sub(header, "NbOfTxs", str(len(transactions)))
    _sub(header, "CtrlSum", format_amount(control_sum))
    _path(header, "InitgPty/Nm", creditor_name)

    for index, ((collection_date, sequence_type), group) in enumerate(group_transactions(transactions), start=1):
        payment = _sub(initiation, "PmtInf")
        _sub(payment, "PmtInfId", f"{message_id}-{index:03d}"[:MAX_ID_LENGTH])
        _sub(payment, "PmtMtd", "DD")
        _sub(payment, "BtchBookg", "true")
        _sub(payment, "NbOfTxs", str(len(group)))
        _sub(payment, "CtrlSum", format_amount(sum((tx.amount for tx in group), Decimal("0"))))

        payment_type = _sub(payment, "PmtTpInf")
        _path(payment_type, "SvcLvl/Cd", "SEPA")
        _path(payment_type, "LclInstrm/Cd", "CORE")
        _sub(payment_type, "SeqTp", sequence_type.value)

        _sub(payment, "ReqdColltnDt", collection_date.isoformat())
        _path(payment, "Cdtr/Nm", creditor_name)
        _path(payment, "CdtrAcct/Id/IBAN", creditor.iban)
        _path(payment, "CdtrAgt/FinInstnId/BIC", creditor.bic)
        _sub(payment, "ChrgBr", "SLEV")

        scheme = _path(payment, "CdtrSchmeId/Id/PrvtId/Othr")
        _sub(scheme, "Id", creditor.ics)
        _path(scheme, "SchmeNm/Prtry", "SEPA")

        for tx in group:
            tx_info = _sub(payment, "DrctDbtTxInf")
            _path(tx_info, "PmtId/EndToEndId", tx.end_to_end_id)
            _sub(tx_info, "InstdAmt", format_amount(tx.amount), Ccy=CURRENCY)
            mandate = _path(tx_info, "DrctDbtTx/MndtRltdInf")
            _sub(mandate, "MndtId", tx.mandate_id)
            _sub(mandate, "DtOfSgntr", tx.mandate_date.isoformat())
            _path(tx_info, "DbtrAgt/FinInstnId/BIC", tx.debtor_bic)
            _path(tx_info, "Dbtr/Nm", tx.debtor_name)
            _path(tx_info, "DbtrAcct/Id/IBAN", tx.debtor_iban)
            _path(tx_info, "RmtInf/Ustrd", tx.remittance_info)

    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)


# ════════════════════════════════════════════════════════════════════════════
# GÉNÉRATION D'UN LOT
# ════════════════════════════════════════════════════════════════════════════

async def generate_pain008(
    invoice_ids: List[str],
    requested_collection_date: Optional[date] = None,
    user: str = "system",
    today_: Optional[date] = None,
    created_at: Optional[datetime] = None,
) -> Pain008File:
    """
    Génère le fichier PAIN.008 d'un lot. Aucune écriture sur les factures:
    le passage en "exported" est une action séparée (mark_exported).

    Raises:
        SepaValidationError si le lot ou le créancier est invalide
    """
    today_ = today_ or today()

    if requested_collection_date and requested_collection_date < today_:
        raise SepaValidationError(
            f"La date de prélèvement demandée ({requested_collection_date.isoformat()}) est dans le passé"
        )

    try:
        creditor = await get_sepa_creditor()
    except ValidationError as e:
        logger.error(f"[SEPA] Profil creancier invalide: {e}")
        raise SepaValidationError("Profil créancier SEPA invalide, vérifiez les paramètres SEPA")
    if not creditor.is_complete:
        raise SepaValidationError(
            "Configurez vos informations créancier SEPA (manquant: "
            + ", ".join(creditor.missing_fields) + ")"
        )
    if not sepa_text(creditor.name, MAX_NAME_LENGTH):
        raise SepaValidationError("Le nom du créancier SEPA ne contient aucun caractère latin SEPA")

    found = await db.invoices.find({"id": {"$in": invoice_ids}}, {"_id": 0}).to_list(len(invoice_ids))
    by_id = {inv["id"]: inv for inv in found}
    invoices = [by_id[i] for i in invoice_ids if i in by_id]
    if not invoices:
        raise SepaValidationError("Aucune facture trouvée pour ce lot")
    if len(invoices) < len(invoice_ids):
        logger.info(f"[SEPA] {len(invoice_ids) - len(invoices)} id(s) de facture inconnu(s) ignore(s)")

    clients = await load_clients([inv.get("client_id") for inv in invoices])

    try:
        transactions = build_transactions(invoices, clients, requested_collection_date, today_)
    except SepaValidationError as e:
        logger.warning(f"[SEPA] Lot refuse: {e.message}")
        raise

    created_at = created_at or datetime.now(timezone.utc)
    message_id = new_message_id(created_at)
    content = render_pain008(creditor, transactions, created_at, message_id)

    control_sum = sum((tx.amount for tx in transactions), Decimal("0"))
    collection_dates = sorted({tx.collection_date for tx in transactions})

    await log_event(
        action="sepa_export_generated",
        entity_type="sepa_batch",
        entity_id=message_id,
        user=user,
        details={
            "transaction_count": len(transactions),
            "control_sum": format_amount(control_sum),
            "collection_dates": [d.isoformat() for d in collection_dates],
        },
        related={"invoice_ids": [tx.invoice_id for tx in transactions]},
    )

    logger.info(
        f"[SEPA] PAIN.008 {message_id} genere | {len(transactions)} transaction(s) | "
        f"total={format_amount(control_sum)} EUR"
    )

    return Pain008File(
        filename=pain008_filename(collection_dates),
        content=content,
        message_id=message_id,
        transaction_count=len(transactions),
        control_sum=control_sum,
        collection_dates=collection_dates,
    )
