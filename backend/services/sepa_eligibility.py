"""
Prélèvements - Filtre d'éligibilité

Une facture est prélevable si:
- payment_method = "prelevement"
- le client existe et son profil SEPA est complet (iban, bic, sepa_mandate, sepa_mandate_date)

Un client introuvable rend la facture inéligible (jamais une erreur).
"""

import logging
from typing import Dict, List, Optional

from config import db
from models.invoice import InvoiceStatus, PaymentMethod, SepaStatus, SequenceType
from models.sepa import PrelevementInvoice

logger = logging.getLogger("sepa_eligibility")

REQUIRED_SEPA_FIELDS = ["iban", "bic", "sepa_mandate", "sepa_mandate_date"]

MAX_LISTED_INVOICES = 1000


def missing_sepa_fields(client: Optional[Dict]) -> List[str]:
    """Champs SEPA obligatoires absents ou vides"""
    if not client:
        return list(REQUIRED_SEPA_FIELDS)
    missing = []
    for field in REQUIRED_SEPA_FIELDS:
        value = client.get(field)
        if value is None or not str(value).strip():
            missing.append(field)
    return missing


def has_valid_sepa_info(client: Optional[Dict]) -> bool:
    return not missing_sepa_fields(client)


def is_direct_debit(invoice: Dict) -> bool:
    return invoice.get("payment_method") == PaymentMethod.PRELEVEMENT.value


def build_prelevement_row(invoice: Dict, client: Optional[Dict]) -> PrelevementInvoice:
    """Projection facture + client pour l'écran des prélèvements"""
    client = client or {}
    return PrelevementInvoice(
        id=invoice["id"],
        invoice_number=invoice.get("invoice_number", ""),
        client_id=invoice.get("client_id", ""),
        client_name=client.get("company_name") or invoice.get("client_name", ""),
        client_email=client.get("email"),
        client_iban=client.get("iban"),
        client_bic=client.get("bic"),
        sepa_mandate=client.get("sepa_mandate"),
        sepa_mandate_date=client.get("sepa_mandate_date"),
        sepa_sequence_type=client.get("sepa_sequence_type") or SequenceType.RCUR.value,
        amount=round(float(invoice.get("total_ttc", 0)), 2),
        issue_date=invoice.get("issue_date"),
        due_date=invoice.get("due_date"),
        debit_date=invoice.get("debit_date"),
        status=invoice.get("status", InvoiceStatus.DRAFT.value),
        sepa_status=invoice.get("sepa_status", SepaStatus.PENDING.value),
        has_valid_sepa_info=has_valid_sepa_info(client),
    )


def sepa_status_filter(status: SepaStatus):
    """Filtre Mongo sur sepa_status. Une facture sans sepa_status est pending."""
    status = SepaStatus(status)
    if status == SepaStatus.PENDING:
        return {"$in": [SepaStatus.PENDING.value, None]}
    return status.value


def prelevement_query(status: SepaStatus) -> Dict:
    query = {
        "payment_method": PaymentMethod.PRELEVEMENT.value,
        "sepa_status": sepa_status_filter(status),
    }
    if status == SepaStatus.PENDING:
        query["status"] = {"$nin": [InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value]}
    return query


async def load_clients(client_ids: List[str]) -> Dict[str, Dict]:
    """Clients indexés par id (les ids inconnus sont simplement absents)"""
    if not client_ids:
        return {}
    clients = await db.clients.find(
        {"id": {"$in": list(set(client_ids))}}, {"_id": 0}
    ).to_list(len(client_ids))
    return {c["id"]: c for c in clients}


async def list_prelevements(status: SepaStatus = SepaStatus.PENDING) -> Dict:
    """
    Factures en prélèvement pour un statut SEPA donné.

    Returns:
        {"invoices": [PrelevementInvoice], "total": int, "totalAmount": float}
    """
    status = SepaStatus(status)
    query = prelevement_query(status)
    invoices = await db.invoices.find(
        query, {"_id": 0}
    ).sort([("debit_date", 1), ("invoice_number", 1)]).to_list(MAX_LISTED_INVOICES)

    clients = await load_clients([inv.get("client_id") for inv in invoices])

    rows = [build_prelevement_row(inv, clients.get(inv.get("client_id"))) for inv in invoices]
    rows.sort(key=lambda r: (r.debit_date or "9999-12-31", r.invoice_number))

    # Totaux calculés en base: la liste affichée peut être tronquée
    total = await db.invoices.count_documents(query)
    totals = await db.invoices.aggregate([
        {"$match": query},
        {"$group": {"_id": None, "amount": {"$sum": "$total_ttc"}}}
    ]).to_list(1)
    total_amount = round(totals[0]["amount"], 2) if totals else 0.0

    if total > len(rows):
        logger.warning(
            f"[SEPA] Liste {status.value} tronquee a {len(rows)} facture(s) sur {total}"
        )
    invalid = sum(1 for r in rows if not r.has_valid_sepa_info)
    if invalid:
        logger.info(f"[SEPA] {invalid}/{len(rows)} facture(s) {status.value} sans info SEPA complete")

    return {"invoices": rows, "total": total, "totalAmount": total_amount}
