"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Prélèvements - Génération PAIN.008                                          ║
║                                                                              ║
║  1. Structure pain.008.001.02 (namespace, ordre des éléments)                ║
║  2. CtrlSum / InstdAmt exacts au centime                                     ║
║  3. Tout-ou-rien: une facture invalide => aucune sortie                      ║
║  4. Dates de prélèvement (demandée, facture, délai minimum)                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from lxml import etree

from models.invoice import SequenceType
from services.pain008 import (
    PAIN_008_NAMESPACE,
    SepaValidationError,
    add_business_days,
    collection_date_for,
    generate_pain008,
    sepa_text,
)
from tests.conftest import (
    OTHER_DEBTOR_BIC,
    OTHER_DEBTOR_IBAN,
    seed_client,
    seed_creditor,
    seed_invoice,
)

NS = {"p": PAIN_008_NAMESPACE}
TODAY = date(2024, 6, 3)  # lundi


def parse(content: bytes):
    return etree.fromstring(content)


def local_names(element):
    return [etree.QName(child).localname for child in element]


class TestPain008Scenarios:

    @pytest.mark.asyncio
    async def test_single_invoice_with_requested_date(self, mock_db):
        """A (120.00, profil complet) seul, date 2024-06-15 => 1 PmtInf, 1 DrctDbtTxInf"""
        await seed_creditor(mock_db)
        client = await seed_client(mock_db)
        invoice = await seed_invoice(mock_db, client["id"], amount=120.00, number="FAC-2024-00001")

        pain = await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)
        doc = parse(pain.content)

        payments = doc.findall(".//p:PmtInf", NS)
        assert len(payments) == 1
        assert payments[0].findtext("p:ReqdColltnDt", namespaces=NS) == "2024-06-15"

        transactions = doc.findall(".//p:DrctDbtTxInf", NS)
        assert len(transactions) == 1
        amount = transactions[0].find("p:InstdAmt", NS)
        assert amount.text == "120.00"
        assert amount.get("Ccy") == "EUR"

        assert pain.filename == "SEPA_DD_20240615.xml"
        assert pain.transaction_count == 1
        assert pain.control_sum == Decimal("120.00")

    @pytest.mark.asyncio
    async def test_incomplete_invoice_aborts_whole_batch(self, mock_db):
        """A complet + B sans BIC => erreur qui nomme B, aucun fichier, A reste pending"""
        await seed_creditor(mock_db)
        complete = await seed_client(mock_db)
        no_bic = await seed_client(mock_db, bic="")
        a = await seed_invoice(mock_db, complete["id"], amount=120.00, number="FAC-2024-00001")
        b = await seed_invoice(mock_db, no_bic["id"], amount=80.00, number="FAC-2024-00002")

        with pytest.raises(SepaValidationError) as exc_info:
            await generate_pain008([a["id"], b["id"]], date(2024, 6, 15), today_=TODAY)

        assert "FAC-2024-00002" in exc_info.value.message
        assert "FAC-2024-00001" not in exc_info.value.message
        assert [i["invoiceId"] for i in exc_info.value.invalid] == [b["id"]]
        assert "BIC" in exc_info.value.invalid[0]["reasons"][0]

        stored = await mock_db.invoices.find_one({"id": a["id"]})
        assert stored["sepa_status"] == "pending"
        assert await mock_db.event_log.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_instructed_amounts_sum_to_the_cent(self, mock_db):
        await seed_creditor(mock_db)
        client = await seed_client(mock_db)
        amounts = [10.10, 20.20, 0.70, 1234.56, 99.99]
        ids = [(await seed_invoice(mock_db, client["id"], amount=a))["id"] for a in amounts]

        pain = await generate_pain008(ids, date(2024, 6, 15), today_=TODAY)
        doc = parse(pain.content)

        instructed = [Decimal(e.text) for e in doc.findall(".//p:InstdAmt", NS)]
        expected = sum(Decimal(str(a)) for a in amounts)
        assert sum(instructed) == expected == Decimal("1365.55")
        assert doc.findtext(".//p:GrpHdr/p:CtrlSum", namespaces=NS) == "1365.55"
        assert doc.findtext(".//p:GrpHdr/p:NbOfTxs", namespaces=NS) == "5"

    @pytest.mark.asyncio
    async def test_unknown_client_aborts_batch(self, mock_db):
        await seed_creditor(mock_db)
        invoice = await seed_invoice(mock_db, "client-disparu", number="FAC-2024-00009")

        with pytest.raises(SepaValidationError) as exc_info:
            await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)

        assert "FAC-2024-00009" in exc_info.value.message
        assert "client introuvable" in exc_info.value.invalid[0]["reasons"]

    @pytest.mark.asyncio
    async def test_unknown_invoice_ids_are_ignored(self, mock_db):
        await seed_creditor(mock_db)
        client = await seed_client(mock_db)
        invoice = await seed_invoice(mock_db, client["id"])

        pain = await generate_pain008(["inconnue", invoice["id"]], date(2024, 6, 15), today_=TODAY)

        assert pain.transaction_count == 1

    @pytest.mark.asyncio
    async def test_only_unknown_ids_is_an_error(self, mock_db):
        await seed_creditor(mock_db)
        with pytest.raises(SepaValidationError, match="Aucune facture"):
            await generate_pain008(["inconnue"], date(2024, 6, 15), today_=TODAY)

    @pytest.mark.asyncio
    async def test_incomplete_creditor_blocks_export(self, mock_db):
        await seed_creditor(mock_db, ics="", bic="")
        client = await seed_client(mock_db)
        invoice = await seed_invoice(mock_db, client["id"])

        with pytest.raises(SepaValidationError, match="créancier"):
            await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)

    @pytest.mark.asyncio
    async def test_past_requested_date_rejected(self, mock_db):
        await seed_creditor(mock_db)
        client = await seed_client(mock_db)
        invoice = await seed_invoice(mock_db, client["id"])

        with pytest.raises(SepaValidationError, match="passé"):
            await generate_pain008([invoice["id"]], date(2024, 5, 31), today_=TODAY)

    @pytest.mark.asyncio
    async def test_invalid_iban_and_non_positive_amount(self, mock_db):
        await seed_creditor(mock_db)
        bad_iban = await seed_client(mock_db, iban="FR1420041010050500013M02607")
        client = await seed_client(mock_db)
        a = await seed_invoice(mock_db, bad_iban["id"], number="FAC-2024-00011")
        b = await seed_invoice(mock_db, client["id"], amount=0, number="FAC-2024-00012")

        with pytest.raises(SepaValidationError) as exc_info:
            await generate_pain008([a["id"], b["id"]], date(2024, 6, 15), today_=TODAY)

        reasons = {i["invoiceNumber"]: i["reasons"] for i in exc_info.value.invalid}
        assert reasons["FAC-2024-00011"] == ["IBAN invalide"]
        assert reasons["FAC-2024-00012"] == ["montant nul ou négatif"]

    @pytest.mark.asyncio
    async def test_export_is_logged(self, mock_db):
        await seed_creditor(mock_db)
        client = await seed_client(mock_db)
        invoice = await seed_invoice(mock_db, client["id"])

        pain = await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)

        event = await mock_db.event_log.find_one({"action": "sepa_export_generated"})
        assert event["entity_id"] == pain.message_id
        assert event["related"]["invoice_ids"] == [invoice["id"]]

    @pytest.mark.asyncio
    async def test_non_latin_debtor_name_aborts_batch(self, mock_db):
        """Un nom qui se translittère en chaîne vide donnerait un <Nm> vide"""
        await seed_creditor(mock_db)
        client = await seed_client(mock_db, company_name="ООО Ромашка")
        invoice = await seed_invoice(mock_db, client["id"], number="FAC-2024-00021")

        with pytest.raises(SepaValidationError) as exc_info:
            await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)

        assert "FAC-2024-00021" in exc_info.value.message
        assert exc_info.value.invalid[0]["reasons"] == ["nom du débiteur sans caractère latin SEPA"]

    @pytest.mark.asyncio
    async def test_mandate_reference_is_never_rewritten(self, mock_db):
        """RUM_2023_001 ne doit pas devenir 'RUM 2023 001' dans le fichier"""
        await seed_creditor(mock_db)
        client = await seed_client(mock_db, sepa_mandate="RUM_2023_001")
        invoice = await seed_invoice(mock_db, client["id"], number="FAC-2024-00022")

        with pytest.raises(SepaValidationError) as exc_info:
            await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)

        assert "FAC-2024-00022" in exc_info.value.message
        assert exc_info.value.invalid[0]["reasons"] == ["référence de mandat (RUM) hors jeu de caractères SEPA"]
        assert await mock_db.event_log.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_mandate_reference_written_as_stored(self, mock_db):
        await seed_creditor(mock_db)
        client = await seed_client(mock_db, sepa_mandate="RUM/2023:001+A")
        invoice = await seed_invoice(mock_db, client["id"])

        pain = await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)

        assert parse(pain.content).findtext(".//p:MndtId", namespaces=NS) == "RUM/2023:001+A"

    @pytest.mark.asyncio
    async def test_non_latin_creditor_name_blocks_export(self, mock_db):
        await seed_creditor(mock_db, name="Ромашка")
        client = await seed_client(mock_db)
        invoice = await seed_invoice(mock_db, client["id"])

        with pytest.raises(SepaValidationError, match="créancier"):
            await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)


class TestPain008Structure:

    @pytest.mark.asyncio
    async def test_document_layout(self, mock_db):
        await seed_creditor(mock_db)
        client = await seed_client(mock_db, sepa_mandate="RUM-ABC-1")
        invoice = await seed_invoice(mock_db, client["id"], number="FAC-2024-00001")
        created_at = datetime(2024, 6, 3, 9, 30, 0, tzinfo=timezone.utc)

        pain = await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY, created_at=created_at)
        assert pain.content.startswith(b"<?xml version='1.0' encoding='UTF-8'?>")
        doc = parse(pain.content)

        assert doc.tag == f"{{{PAIN_008_NAMESPACE}}}Document"
        initiation = doc.find("p:CstmrDrctDbtInitn", NS)
        assert local_names(initiation) == ["GrpHdr", "PmtInf"]

        header = initiation.find("p:GrpHdr", NS)
        assert local_names(header) == ["MsgId", "CreDtTm", "NbOfTxs", "CtrlSum", "InitgPty"]
        assert header.findtext("p:CreDtTm", namespaces=NS) == "2024-06-03T09:30:00"
        assert header.findtext("p:MsgId", namespaces=NS).startswith("PRLV-20240603093000-")
        assert len(header.findtext("p:MsgId", namespaces=NS)) <= 35

        payment = initiation.find("p:PmtInf", NS)
        assert local_names(payment) == [
            "PmtInfId", "PmtMtd", "BtchBookg", "NbOfTxs", "CtrlSum", "PmtTpInf",
            "ReqdColltnDt", "Cdtr", "CdtrAcct", "CdtrAgt", "ChrgBr", "CdtrSchmeId",
            "DrctDbtTxInf",
        ]
        assert payment.findtext("p:PmtMtd", namespaces=NS) == "DD"
        assert payment.findtext("p:PmtTpInf/p:SvcLvl/p:Cd", namespaces=NS) == "SEPA"
        assert payment.findtext("p:PmtTpInf/p:LclInstrm/p:Cd", namespaces=NS) == "CORE"
        assert payment.findtext("p:PmtTpInf/p:SeqTp", namespaces=NS) == "RCUR"
        assert payment.findtext("p:Cdtr/p:Nm", namespaces=NS) == "Atelier Numerique SARL"
        assert payment.findtext("p:CdtrAcct/p:Id/p:IBAN", namespaces=NS) == "FR1420041010050500013M02606"
        assert payment.findtext("p:CdtrAgt/p:FinInstnId/p:BIC", namespaces=NS) == "PSSTFRPPPAR"
        assert payment.findtext(
            "p:CdtrSchmeId/p:Id/p:PrvtId/p:Othr/p:Id", namespaces=NS
        ) == "FR12ZZZ123456"
        assert payment.findtext(
            "p:CdtrSchmeId/p:Id/p:PrvtId/p:Othr/p:SchmeNm/p:Prtry", namespaces=NS
        ) == "SEPA"

        tx = payment.find("p:DrctDbtTxInf", NS)
        assert local_names(tx) == [
            "PmtId", "InstdAmt", "DrctDbtTx", "DbtrAgt", "Dbtr", "DbtrAcct", "RmtInf",
        ]
        assert tx.findtext("p:PmtId/p:EndToEndId", namespaces=NS) == "FAC-2024-00001"
        assert tx.findtext("p:DrctDbtTx/p:MndtRltdInf/p:MndtId", namespaces=NS) == "RUM-ABC-1"
        assert tx.findtext("p:DrctDbtTx/p:MndtRltdInf/p:DtOfSgntr", namespaces=NS) == "2023-01-15"
        assert tx.findtext("p:DbtrAgt/p:FinInstnId/p:BIC", namespaces=NS) == "COBADEFFXXX"
        assert tx.findtext("p:Dbtr/p:Nm", namespaces=NS) == "Boulangerie Dupont"
        assert tx.findtext("p:DbtrAcct/p:Id/p:IBAN", namespaces=NS) == "DE89370400440532013000"
        assert tx.findtext("p:RmtInf/p:Ustrd", namespaces=NS) == "Facture FAC-2024-00001"

    @pytest.mark.asyncio
    async def test_one_payment_block_per_date_and_sequence(self, mock_db):
        await seed_creditor(mock_db)
        recurring = await seed_client(mock_db)
        first = await seed_client(
            mock_db, iban=OTHER_DEBTOR_IBAN, bic=OTHER_DEBTOR_BIC, sepa_sequence_type="FRST"
        )
        await seed_invoice(mock_db, recurring["id"], amount=10.00, debit_date="2024-06-20")
        await seed_invoice(mock_db, recurring["id"], amount=20.00, debit_date="2024-06-14")
        await seed_invoice(mock_db, recurring["id"], amount=30.00, debit_date="2024-06-20")
        await seed_invoice(mock_db, first["id"], amount=40.00, debit_date="2024-06-20")
        ids = [inv["id"] for inv in await mock_db.invoices.find({}).to_list(10)]

        pain = await generate_pain008(ids, today_=TODAY)
        doc = parse(pain.content)

        blocks = [
            (
                p.findtext("p:ReqdColltnDt", namespaces=NS),
                p.findtext("p:PmtTpInf/p:SeqTp", namespaces=NS),
                p.findtext("p:CtrlSum", namespaces=NS),
            )
            for p in doc.findall(".//p:PmtInf", NS)
        ]
        assert blocks == [
            ("2024-06-14", "RCUR", "20.00"),
            ("2024-06-20", "FRST", "40.00"),
            ("2024-06-20", "RCUR", "40.00"),
        ]
        assert pain.filename == "SEPA_DD_20240614.xml"

    @pytest.mark.asyncio
    async def test_debtor_name_transliterated(self, mock_db):
        await seed_creditor(mock_db)
        client = await seed_client(mock_db, company_name="Société Générale & Fils — Crêperie")
        invoice = await seed_invoice(mock_db, client["id"])

        pain = await generate_pain008([invoice["id"]], date(2024, 6, 15), today_=TODAY)

        name = parse(pain.content).findtext(".//p:Dbtr/p:Nm", namespaces=NS)
        assert name == "Societe Generale Fils Creperie"


class TestCollectionDatePolicy:

    def test_add_business_days_skips_weekend(self):
        friday = date(2024, 6, 7)
        assert add_business_days(friday, 1) == date(2024, 6, 10)
        assert add_business_days(friday, 5) == date(2024, 6, 14)

    def test_requested_date_wins(self):
        assert collection_date_for(
            SequenceType.FRST, date(2024, 6, 4), date(2024, 7, 1), TODAY
        ) == date(2024, 6, 4)

    def test_invoice_debit_date_used_when_far_enough(self):
        assert collection_date_for(
            SequenceType.RCUR, None, date(2024, 6, 20), TODAY
        ) == date(2024, 6, 20)

    def test_too_early_debit_date_moves_to_minimum(self):
        # RCUR: 2 jours ouvrés après le lundi 3 juin
        assert collection_date_for(
            SequenceType.RCUR, None, date(2024, 6, 4), TODAY
        ) == date(2024, 6, 5)
        # FRST: 5 jours ouvrés
        assert collection_date_for(
            SequenceType.FRST, None, date(2024, 6, 4), TODAY
        ) == date(2024, 6, 10)

    def test_missing_debit_date_uses_minimum(self):
        assert collection_date_for(SequenceType.OOFF, None, None, TODAY) == date(2024, 6, 10)


class TestSepaText:

    def test_truncates(self):
        assert sepa_text("x" * 100, 70) == "x" * 70

    def test_removes_forbidden_characters(self):
        assert sepa_text("Dupont & Fils_SAS", 70) == "Dupont Fils SAS"
