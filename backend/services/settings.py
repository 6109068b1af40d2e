"""
Prélèvements - Service Settings

Gestion des parametres du tenant.
Collection: settings (chaque doc identifie par key)

Settings disponibles:
- sepa_creditor: identite du creancier SEPA (ICS, nom, IBAN, BIC)
"""

import logging
from typing import Optional, Dict, Any

from config import db, now_iso, SEPA_CREDITOR_DEFAULTS
from models.sepa import CreditorProfile

logger = logging.getLogger("settings")

SEPA_CREDITOR_KEY = "sepa_creditor"
_META_FIELDS = ("key", "created_at", "updated_at", "updated_by")


async def get_setting(key: str) -> Optional[Dict]:
    """Recupere un setting par sa cle"""
    doc = await db.settings.find_one({"key": key}, {"_id": 0})
    return doc


async def upsert_setting(key: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Cree ou met a jour un setting"""
    data["key"] = key
    data["updated_at"] = now_iso()
    data["updated_by"] = updated_by

    existing = await db.settings.find_one({"key": key})
    if existing:
        await db.settings.update_one({"key": key}, {"$set": data})
    else:
        data["created_at"] = now_iso()
        await db.settings.insert_one(data)

    result = await db.settings.find_one({"key": key}, {"_id": 0})
    return result


# ---- Creancier SEPA ----

async def get_sepa_creditor() -> CreditorProfile:
    """
    Retourne le profil creancier type.
    Les valeurs stockees surchargent les defaults d'environnement champ par champ
    (une valeur vide stockee ne masque pas le default).
    """
    doc = await get_setting(SEPA_CREDITOR_KEY) or {}
    stored = {k: v for k, v in doc.items() if k not in _META_FIELDS and v}
    return CreditorProfile(**{**SEPA_CREDITOR_DEFAULTS, **stored})


async def update_sepa_creditor(profile: CreditorProfile, updated_by: str = "system") -> CreditorProfile:
    """Enregistre le profil creancier (deja valide par le modele)"""
    await upsert_setting(SEPA_CREDITOR_KEY, profile.model_dump(), updated_by)
    logger.info(f"[SETTINGS] Creancier SEPA mis a jour par {updated_by} (complet={profile.is_complete})")
    return await get_sepa_creditor()
