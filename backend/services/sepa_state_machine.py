"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Prélèvements - SEPA State Machine                                           ║
║                                                                              ║
║  SEUL CE MODULE peut modifier invoice.sepa_status                            ║
║                                                                              ║
║  TRANSITIONS:                                                                ║
║  - pending  -> exported  (fichier PAIN.008 téléchargé)                       ║
║  - exported -> executed  (prélèvement confirmé, facture payée)               ║
║                                                                              ║
║  IDEMPOTENCE:                                                                ║
║  - Rejouer une action sur une facture déjà dans l'état cible = no-op         ║
║  - Seuls les ids fournis sont modifiés, jamais d'autres factures             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List, Optional

from config import db, now_iso, today
from models.invoice import InvoiceStatus, PaymentMethod, SepaStatus
from services.event_logger import log_event
from services.sepa_eligibility import sepa_status_filter

logger = logging.getLogger("sepa_state_machine")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_SEPA_TRANSITIONS = {
    SepaStatus.PENDING: [SepaStatus.EXPORTED],
    SepaStatus.EXPORTED: [SepaStatus.EXECUTED],
    SepaStatus.EXECUTED: [],  # TERMINAL
}


class SepaTransitionError(Exception):
    """Raised when a sepa_status transition is not allowed"""
    pass


def validate_sepa_transition(from_status: SepaStatus, to_status: SepaStatus) -> bool:
    """
    Valide qu'une transition de statut SEPA est autorisée.
    """
    from_status = SepaStatus(from_status)
    to_status = SepaStatus(to_status)
    valid_next = VALID_SEPA_TRANSITIONS[from_status]

    if to_status not in valid_next:
        raise SepaTransitionError(
            f"INVALID TRANSITION: cannot go from '{from_status.value}' to '{to_status.value}'. "
            f"Valid transitions from '{from_status.value}': {[s.value for s in valid_next]}"
        )

    return True


async def _load_direct_debit_invoices(invoice_ids: List[str]) -> List[Dict]:
    return await db.invoices.find(
        {"id": {"$in": invoice_ids}, "payment_method": PaymentMethod.PRELEVEMENT.value},
        {"_id": 0, "id": 1, "invoice_number": 1, "sepa_status": 1, "status": 1}
    ).to_list(len(invoice_ids))


def _partition(invoices: List[Dict], source: SepaStatus, target: SepaStatus) -> Dict[str, List[str]]:
    """
    Répartit les factures:
    - movable   : dans l'état source
    - unchanged : déjà dans l'état cible (ou au-delà)
    - skipped   : dans un état antérieur à la source
    """
    order = [SepaStatus.PENDING, SepaStatus.EXPORTED, SepaStatus.EXECUTED]
    result = {"movable": [], "unchanged": [], "skipped": []}
    for inv in invoices:
        current = SepaStatus(inv.get("sepa_status") or SepaStatus.PENDING.value)
        if current == source:
            validate_sepa_transition(current, target)
            result["movable"].append(inv["id"])
        elif order.index(current) >= order.index(target):
            result["unchanged"].append(inv["id"])
        else:
            result["skipped"].append(inv["id"])
    return result


# ════════════════════════════════════════════════════════════════════════════
# SAFE STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

async def mark_exported(
    invoice_ids: List[str],
    message_id: Optional[str] = None,
    user: str = "system"
) -> Dict[str, Any]:
    """
    🔒 pending -> exported pour les factures listées.

    Returns:
        {"updated": n, "unchanged": n, "ignored": n, "invoiceIds": [ids mis à jour]}
    """
    invoices = await _load_direct_debit_invoices(invoice_ids)
    parts = _partition(invoices, SepaStatus.PENDING, SepaStatus.EXPORTED)
    movable = parts["movable"]
    now = now_iso()

    if movable:
        update = {
            "sepa_status": SepaStatus.EXPORTED.value,
            "sepa_exported_at": now,
            "updated_at": now,
        }
        if message_id:
            update["sepa_message_id"] = message_id
        # Le filtre sur sepa_status garde l'opération sûre si l'état a changé entre-temps
        await db.invoices.update_many(
            {"id": {"$in": movable}, "sepa_status": sepa_status_filter(SepaStatus.PENDING)},
            {"$set": update}
        )
        await log_event(
            action="sepa_mark_exported",
            entity_type="invoice",
            entity_id=message_id or movable[0],
            user=user,
            details={"count": len(movable), "message_id": message_id},
            related={"invoice_ids": movable},
        )

    ignored = len(invoice_ids) - len(invoices)
    logger.info(
        f"[STATE_MACHINE] mark_exported | updated={len(movable)} "
        f"unchanged={len(parts['unchanged'])} ignored={ignored}"
    )

    return {
        "updated": len(movable),
        "unchanged": len(parts["unchanged"]),
        "ignored": ignored,
        "invoiceIds": movable,
    }


async def mark_paid(invoice_ids: List[str], user: str = "system") -> Dict[str, Any]:
    """
    🔒 exported -> executed pour les factures listées.
    La facture passe aussi en status="paid" (paiement par prélèvement).

    Action manuelle de l'opérateur: aucune vérification contre un relevé bancaire.

    Returns:
        {"updated": n, "unchanged": n, "skipped": n, "ignored": n, "invoiceIds": [...]}
    """
    invoices = await _load_direct_debit_invoices(invoice_ids)
    parts = _partition(invoices, SepaStatus.EXPORTED, SepaStatus.EXECUTED)
    movable = parts["movable"]
    now = now_iso()

    if movable:
        await db.invoices.update_many(
            {"id": {"$in": movable}, "sepa_status": SepaStatus.EXPORTED.value},
            {"$set": {
                "sepa_status": SepaStatus.EXECUTED.value,
                "sepa_executed_at": now,
                "status": InvoiceStatus.PAID.value,
                "payment_date": today().isoformat(),
                "payment_method": PaymentMethod.PRELEVEMENT.value,
                "updated_at": now,
            }}
        )
        await log_event(
            action="sepa_mark_paid",
            entity_type="invoice",
            entity_id=movable[0],
            user=user,
            details={"count": len(movable)},
            related={"invoice_ids": movable},
        )

    if parts["skipped"]:
        logger.warning(
            f"[STATE_MACHINE] mark_paid ignore {len(parts['skipped'])} facture(s) non exportee(s)"
        )

    ignored = len(invoice_ids) - len(invoices)
    logger.info(
        f"[STATE_MACHINE] mark_paid | updated={len(movable)} "
        f"unchanged={len(parts['unchanged'])} skipped={len(parts['skipped'])} ignored={ignored}"
    )

    return {
        "updated": len(movable),
        "unchanged": len(parts["unchanged"]),
        "skipped": len(parts["skipped"]),
        "ignored": ignored,
        "invoiceIds": movable,
    }
