"""
Prélèvements - Sélection d'un lot

État de sélection de l'opérateur sur la liste des prélèvements.
Rien n'est persisté: la sélection vit le temps d'un écran.
"""

from datetime import date
from typing import Dict, Iterable, List, Optional

from models.sepa import ExportBatch, PrelevementInvoice


class BatchSelection:
    """Ensemble ordonné d'ids de factures sélectionnées"""

    def __init__(self, invoices: Iterable[PrelevementInvoice]):
        self._invoices: Dict[str, PrelevementInvoice] = {inv.id: inv for inv in invoices}
        self._selected: Dict[str, None] = {}

    @property
    def selected_ids(self) -> List[str]:
        return list(self._selected)

    @property
    def valid_count(self) -> int:
        return sum(1 for inv in self._invoices.values() if inv.has_valid_sepa_info)

    @property
    def invalid_count(self) -> int:
        return len(self._invoices) - self.valid_count

    @property
    def selected_amount(self) -> float:
        return round(sum(self._invoices[i].amount for i in self._selected), 2)

    def is_selected(self, invoice_id: str) -> bool:
        return invoice_id in self._selected

    def toggle(self, invoice_id: str) -> bool:
        """
        Ajoute ou retire une facture. Retourne True si elle est sélectionnée après l'appel.
        Les ids inconnus et les factures sans profil SEPA complet sont ignorés.
        """
        if invoice_id in self._selected:
            del self._selected[invoice_id]
            return False
        invoice = self._invoices.get(invoice_id)
        if invoice is None or not invoice.has_valid_sepa_info:
            return False
        self._selected[invoice_id] = None
        return True

    def select_all(self) -> List[str]:
        """
        Sélectionne toutes les factures au profil SEPA complet.
        Si elles le sont déjà toutes, vide la sélection.
        """
        valid_ids = [i for i, inv in self._invoices.items() if inv.has_valid_sepa_info]
        if len(self._selected) == len(valid_ids):
            self._selected = {}
        else:
            self._selected = dict.fromkeys(valid_ids)
        return self.selected_ids

    def clear(self):
        self._selected = {}

    def to_export_batch(self, requested_collection_date: Optional[date] = None) -> ExportBatch:
        if not self._selected:
            raise ValueError("Veuillez sélectionner au moins une facture")
        return ExportBatch(
            invoice_ids=self.selected_ids,
            requested_collection_date=requested_collection_date,
        )
