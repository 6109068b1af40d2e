"""
Prélèvements - Routes SEPA Direct Debit

- GET  /prelevements?status=pending|exported|executed : liste + totaux
- POST /prelevements/pain008                         : fichier PAIN.008 du lot
- POST /prelevements                                 : mark_exported / mark_paid
- GET  /prelevements/history                         : journal des exports et transitions
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Response

from models.invoice import SepaStatus, sepa_status_label
from models.sepa import ExportBatch, PrelevementAction, PrelevementActionType
from services.event_logger import get_events
from services.pain008 import SepaValidationError, generate_pain008, format_amount
from services.sepa_eligibility import list_prelevements
from services.sepa_state_machine import mark_exported, mark_paid

router = APIRouter(prefix="/prelevements", tags=["Prelevements"])

HISTORY_ACTIONS = ("sepa_export_generated", "sepa_mark_exported", "sepa_mark_paid")


@router.get("")
async def get_prelevements(status: str = "pending"):
    """Factures en prélèvement pour un statut SEPA, avec hasValidSepaInfo"""
    try:
        sepa_status = SepaStatus(status)
    except ValueError:
        raise HTTPException(400, f"Statut invalide: {status}")

    result = await list_prelevements(sepa_status)
    return {
        "invoices": [row.model_dump(by_alias=True) for row in result["invoices"]],
        "total": result["total"],
        "totalAmount": result["totalAmount"],
        "status": sepa_status.value,
        "statusLabel": sepa_status_label(sepa_status),
    }


@router.post("/pain008")
async def export_pain008(batch: ExportBatch):
    """
    Génère le fichier PAIN.008 du lot.
    Tout-ou-rien: une facture invalide => 400, aucun fichier.
    """
    try:
        pain = await generate_pain008(batch.invoice_ids, batch.requested_collection_date)
    except SepaValidationError as e:
        raise HTTPException(400, e.message)

    return Response(
        content=pain.content,
        media_type="application/xml",
        headers={
            "Content-Disposition": f'attachment; filename="{pain.filename}"',
            "X-Sepa-Message-Id": pain.message_id,
            "X-Sepa-Transaction-Count": str(pain.transaction_count),
            "X-Sepa-Control-Sum": format_amount(pain.control_sum),
        },
    )


@router.post("")
async def update_prelevements(data: PrelevementAction):
    """Transition explicite sur une liste d'ids (idempotente)"""
    if data.action == PrelevementActionType.MARK_EXPORTED:
        result = await mark_exported(data.invoice_ids, message_id=data.message_id)
    else:
        result = await mark_paid(data.invoice_ids)
    return {"success": True, "action": data.action.value, **result}


@router.get("/history")
async def get_history(invoice_id: Optional[str] = None, limit: int = 50):
    """Fichiers générés et transitions, les plus récents d'abord"""
    events = await get_events(actions=HISTORY_ACTIONS, invoice_id=invoice_id, limit=limit)
    return {"events": events, "count": len(events)}
