"""
Prélèvements - Routes Clients
Création, fiche client et profil SEPA (IBAN, BIC, mandat).
"""

from fastapi import APIRouter, HTTPException
import uuid

from config import db, now_iso
from models.client import ClientCreate, ClientSepaProfile
from services.event_logger import log_event
from services.sepa_eligibility import has_valid_sepa_info, missing_sepa_fields

router = APIRouter(prefix="/clients", tags=["Clients"])


def _sepa_fields(profile: ClientSepaProfile) -> dict:
    return {
        "iban": profile.iban,
        "bic": profile.bic,
        "sepa_mandate": profile.sepa_mandate,
        "sepa_mandate_date": profile.sepa_mandate_date.isoformat() if profile.sepa_mandate_date else None,
        "sepa_sequence_type": profile.sepa_sequence_type.value,
    }


def _with_sepa_check(client: dict) -> dict:
    client["has_valid_sepa_info"] = has_valid_sepa_info(client)
    client["missing_sepa_fields"] = missing_sepa_fields(client)
    return client


@router.post("")
async def create_client(data: ClientCreate):
    """Crée un nouveau client (profil SEPA optionnel)"""
    existing = await db.clients.find_one({"email": data.email})
    if existing:
        raise HTTPException(status_code=400, detail="Un client avec cet email existe déjà")

    client = {
        "id": str(uuid.uuid4()),
        "company_name": data.company_name,
        "email": data.email,
        "contact_name": data.contact_name or "",
        "phone": data.phone or "",
        **_sepa_fields(data.sepa or ClientSepaProfile()),
        "created_at": now_iso(),
        "updated_at": now_iso()
    }

    await db.clients.insert_one(client)
    client.pop("_id", None)

    return {"success": True, "client": _with_sepa_check(client)}


@router.get("/{client_id}")
async def get_client(client_id: str):
    client = await db.clients.find_one({"id": client_id}, {"_id": 0})
    if not client:
        raise HTTPException(status_code=404, detail="Client non trouvé")
    return {"client": _with_sepa_check(client)}


@router.put("/{client_id}/sepa")
async def update_client_sepa(client_id: str, data: ClientSepaProfile):
    """Met à jour le profil SEPA. Un champ omis est effacé."""
    client = await db.clients.find_one({"id": client_id})
    if not client:
        raise HTTPException(status_code=404, detail="Client non trouvé")

    update = {**_sepa_fields(data), "updated_at": now_iso()}
    await db.clients.update_one({"id": client_id}, {"$set": update})

    await log_event(
        action="client_sepa_update",
        entity_type="client",
        entity_id=client_id,
        details={"complete": has_valid_sepa_info(update), "sequence_type": update["sepa_sequence_type"]},
    )

    updated = await db.clients.find_one({"id": client_id}, {"_id": 0})
    return {"success": True, "client": _with_sepa_check(updated)}
