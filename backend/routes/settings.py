"""
Prélèvements - Routes Settings

Endpoints pour gerer les parametres du tenant:
- Creancier SEPA (ICS, nom, IBAN, BIC)
"""

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from models.sepa import CreditorProfile
from services.event_logger import log_event
from services.settings import get_sepa_creditor, update_sepa_creditor

router = APIRouter(prefix="/settings", tags=["Settings"])


def _creditor_response(profile: CreditorProfile) -> dict:
    return {
        **profile.model_dump(by_alias=True),
        "isComplete": profile.is_complete,
        "missingFields": profile.missing_fields,
    }


@router.get("/sepa")
async def get_sepa_settings():
    """Profil creancier SEPA courant"""
    try:
        profile = await get_sepa_creditor()
    except ValidationError as e:
        raise HTTPException(500, f"Profil creancier SEPA stocke invalide: {e.errors()[0]['msg']}")
    return _creditor_response(profile)


@router.put("/sepa")
async def update_sepa_settings(data: CreditorProfile):
    """Met a jour le profil creancier SEPA"""
    profile = await update_sepa_creditor(data)
    await log_event(
        action="settings_sepa_update",
        entity_type="settings",
        entity_id="sepa_creditor",
        details={"complete": profile.is_complete},
    )
    return {"success": True, "setting": _creditor_response(profile)}
