"""
Prélèvements - Invoice Routes
Invoices: lines → subtotal_ht, tax_amount, total_ttc, invoice_number, status, dates.
Direct-debit invoices carry a sepa_status, handled by the SEPA state machine.
"""

from fastapi import APIRouter, HTTPException
from typing import Optional
import uuid
from datetime import datetime, timezone, timedelta

from config import db, now_iso, today
from models.invoice import InvoiceCreate, InvoiceStatus, PaymentMethod, SepaStatus

router = APIRouter(prefix="/invoices", tags=["Invoices"])

DEFAULT_PAYMENT_TERMS_DAYS = 30


async def _next_invoice_number() -> str:
    year = datetime.now(timezone.utc).year
    count = await db.invoices.count_documents({"invoice_number": {"$regex": f"^FAC-{year}-"}})
    return f"FAC-{year}-{count + 1:05d}"


def compute_totals(items) -> dict:
    subtotal_ht = 0.0
    tax_amount = 0.0
    for item in items:
        line_ht = item.quantity * item.unit_price_ht
        subtotal_ht += line_ht
        tax_amount += line_ht * item.vat_rate / 100
    return {
        "subtotal_ht": round(subtotal_ht, 2),
        "tax_amount": round(tax_amount, 2),
        "total_ttc": round(subtotal_ht + tax_amount, 2),
    }


# ════════════════════════════════════════════════════════════════════════
# CRUD
# ════════════════════════════════════════════════════════════════════════

@router.get("")
async def list_invoices(
    status: Optional[str] = None,
    payment_method: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
):
    query = {}
    if status:
        query["status"] = status
    if payment_method:
        query["payment_method"] = payment_method

    invoices = await db.invoices.find(
        query, {"_id": 0}
    ).sort("issue_date", -1).skip(skip).limit(limit).to_list(limit)

    total = await db.invoices.count_documents(query)
    return {"invoices": invoices, "count": len(invoices), "total": total}


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: str):
    inv = await db.invoices.find_one({"id": invoice_id}, {"_id": 0})
    if not inv:
        raise HTTPException(404, "Facture non trouvée")
    return {"invoice": inv}


@router.post("")
async def create_invoice(data: InvoiceCreate):
    """
    Crée une facture. En prélèvement, la date de prélèvement vaut
    l'échéance si elle n'est pas fournie et sepa_status démarre à pending.
    """
    client = await db.clients.find_one({"id": data.client_id}, {"_id": 0})
    if not client:
        raise HTTPException(404, "Client non trouvé")

    issue_date = data.issue_date or today()
    due_date = data.due_date or issue_date + timedelta(days=DEFAULT_PAYMENT_TERMS_DAYS)
    if due_date < issue_date:
        raise HTTPException(400, "L'échéance ne peut pas précéder la date d'émission")

    now = now_iso()
    invoice = {
        "id": str(uuid.uuid4()),
        "invoice_number": await _next_invoice_number(),
        "client_id": data.client_id,
        "client_name": client.get("company_name", ""),
        "items": [item.model_dump() for item in data.items],
        **compute_totals(data.items),
        "status": data.status.value,
        "payment_method": data.payment_method.value,
        "issue_date": issue_date.isoformat(),
        "due_date": due_date.isoformat(),
        "debit_date": None,
        "payment_date": None,
        "notes": data.notes or "",
        "created_at": now,
        "updated_at": now,
    }

    if data.payment_method == PaymentMethod.PRELEVEMENT:
        invoice["debit_date"] = (data.debit_date or due_date).isoformat()
        invoice["sepa_status"] = SepaStatus.PENDING.value

    await db.invoices.insert_one(invoice)
    invoice.pop("_id", None)
    return {"success": True, "invoice": invoice}
