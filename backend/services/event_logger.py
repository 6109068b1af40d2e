"""
Prélèvements - Event Logger

Journal d'audit des actions SEPA (exports, transitions, paramètres).
Une seule fonction à appeler depuis les routes et services.
"""

import uuid
from typing import Dict, List, Optional

from config import db, now_iso


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: sepa_export_generated | sepa_mark_exported | sepa_mark_paid | ...
        entity_type: invoice | client | settings | sepa_batch
        entity_id: id de l'entité (message id pour un lot)
        user: opérateur à l'origine de l'action
        details: compteurs, montants, etc.
        related: ids liés (invoice_ids)
    """
    await db.event_log.insert_one({
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    })


async def get_events(
    actions: Optional[List[str]] = None,
    invoice_id: Optional[str] = None,
    limit: int = 100
) -> List[Dict]:
    """Derniers evenements, les plus recents d'abord"""
    query = {}
    if actions:
        query["action"] = {"$in": list(actions)}
    if invoice_id:
        query["$or"] = [{"entity_id": invoice_id}, {"related.invoice_ids": invoice_id}]
    return await db.event_log.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)
