"""HTTP-level tests for the ledger router.

The app runs in-process through ``TestClient`` (lifespan not triggered, so
no database is touched); ``get_db`` is overridden with a mock session and
the service functions are patched where each test needs them.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app
from app.models.cash_account import CashDirection
from app.models.ledger import EntryStatus
from app.models.receipt import Receipt, ReceiptLine, ReceiptLineStatus, ReceiptOperation
from app.services.ledger.errors import (
    DependencyFailureError,
    EntryNotFoundError,
    StateConflictError,
)
from app.services.ledger.receipts import ReceiptResult
from app.services.ledger.settlement import SettlementResult
from app.services.ledger.statement import build_statement


@pytest.fixture
def session():
    db = MagicMock()
    db.flush = AsyncMock()
    db.execute = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db


@pytest.fixture
def client(session):
    async def _override_get_db():
        yield session

    app.dependency_overrides[get_db] = _override_get_db
    with patch(
        "app.middleware.error_capture.log_error_standalone", new_callable=AsyncMock
    ) as captured:
        test_client = TestClient(app)
        test_client.captured = captured
        yield test_client
    app.dependency_overrides.clear()


class TestHealth:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "rentledger-api"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


class TestEntries:

    def test_unbalanced_entry_is_400(self, client):
        resp = client.post("/api/ledger/entries", json={
            "lines": [
                {"account_id": 1, "debit": "1000"},
                {"account_id": 2, "credit": "999"},
            ],
            "accrual_date": "2026-03-01",
            "due_date": "2026-03-11",
            "category": "Rent",
            "description": "Rent 03/2026",
        })
        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail["code"] == "UNBALANCED"
        assert detail["kind"] == "validation"
        assert detail["context"]["total_debit"] == "1000.00"

    def test_missing_entry_is_404(self, client):
        with patch(
            "app.services.ledger.entries.require_entry",
            AsyncMock(side_effect=EntryNotFoundError(42)),
        ):
            resp = client.get("/api/ledger/entries/42")
        assert resp.status_code == 404
        assert resp.json()["detail"]["context"]["entry_id"] == 42
        client.captured.assert_not_awaited()

    def test_get_entry(self, client, rent_entry):
        with patch("app.services.ledger.entries.require_entry", AsyncMock(return_value=rent_entry)):
            resp = client.get("/api/ledger/entries/1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "pending"
        assert data["outstanding"] == 1000.0
        assert [ln["line_number"] for ln in data["lines"]] == [1, 2, 3]


class TestOperations:

    def test_payment_passes_actor_and_returns_entry(self, client, rent_entry):
        rent_entry.status = EntryStatus.PARTIALLY_PAID
        rent_entry.debit_lines[0].paid_to_date = Decimal("600")
        pay = AsyncMock(return_value=rent_entry)

        with patch("app.services.ledger.payments.register_payment", pay):
            resp = client.post(
                "/api/ledger/entries/1/payments",
                json={"amount": "600", "method": "transfer", "account_id": 4},
                headers={"X-Actor-Id": "9"},
            )

        assert resp.status_code == 200
        assert resp.json()["collected"] == 600.0
        kwargs = pay.call_args.kwargs
        assert kwargs["amount"] == Decimal("600")
        assert kwargs["account_id"] == 4
        assert kwargs["actor_id"] == 9

    def test_payment_amount_must_be_positive(self, client):
        resp = client.post("/api/ledger/entries/1/payments", json={"amount": "0", "method": "cash"})
        assert resp.status_code == 422

    def test_state_conflict_is_409_and_logged_as_warning(self, client):
        error = StateConflictError(
            "Entry 1 is voided", code="TERMINAL_STATE", entry_id=1, status=EntryStatus.VOIDED,
        )
        with patch("app.services.ledger.payments.register_payment", AsyncMock(side_effect=error)):
            resp = client.post(
                "/api/ledger/entries/1/payments", json={"amount": "10", "method": "cash"},
            )
        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["code"] == "TERMINAL_STATE"
        assert detail["context"]["status"] == "voided"
        client.captured.assert_awaited_once()
        assert client.captured.call_args.kwargs["status_code"] == 409

    def test_cash_failure_is_502(self, client):
        error = DependencyFailureError(
            "Cash account update failed", code="CASH_ACCOUNT_FAILURE", entry_id=1, account_id=4,
        )
        with patch("app.services.ledger.settlement.settle_creditor", AsyncMock(side_effect=error)):
            resp = client.post(
                "/api/ledger/entries/1/settlements",
                json={"counterparty_id": 20, "method": "transfer", "account_id": 4},
            )
        assert resp.status_code == 502
        assert resp.json()["detail"]["kind"] == "dependency_failure"

    def test_settlement_reports_payout(self, client, rent_entry):
        result = SettlementResult(entry=rent_entry, payout=Decimal("540.00"), collected=Decimal("600.00"))
        with patch("app.services.ledger.settlement.settle_creditor", AsyncMock(return_value=result)):
            resp = client.post(
                "/api/ledger/entries/1/settlements",
                json={"counterparty_id": 20, "method": "transfer"},
            )
        assert resp.status_code == 200
        assert resp.json()["payout"] == 540.0
        assert resp.json()["entry"]["id"] == 1

    def test_mark_invoiced_passes_reference(self, client, rent_entry):
        rent_entry.status = EntryStatus.INVOICED
        invoice = AsyncMock(return_value=rent_entry)
        with patch("app.services.ledger.entries.mark_invoiced", invoice):
            resp = client.post(
                "/api/ledger/entries/1/invoice",
                json={"invoice_reference": "FC-A-0001-00000042"},
                headers={"X-Actor-Id": "5"},
            )
        assert resp.status_code == 200
        assert resp.json()["status"] == "invoiced"
        assert invoice.call_args.kwargs["invoice_reference"] == "FC-A-0001-00000042"
        assert invoice.call_args.kwargs["actor_id"] == 5

    def test_void_reason_too_short_is_422(self, client):
        resp = client.post("/api/ledger/entries/1/void", json={"reason": "oops"})
        assert resp.status_code == 422


class TestStatementAndReceipts:

    def test_statement(self, client, rent_entry):
        rent_entry.status = EntryStatus.PARTIALLY_PAID
        rent_entry.debit_lines[0].paid_to_date = Decimal("600")
        st = build_statement([rent_entry], 20)

        with patch("app.services.ledger.statement.get_statement", AsyncMock(return_value=st)) as get:
            resp = client.get("/api/ledger/statements/20", params={"cutoff": "2026-03-31"})

        assert resp.status_code == 200
        (movement,) = resp.json()["movements"]
        assert movement["side"] == "credit"
        assert movement["entitlement"] == 540.0
        assert movement["available"] == 540.0
        assert resp.json()["totals"]["net_balance"] == -540.0
        assert get.call_args.kwargs["cutoff"] == date(2026, 3, 31)

    def test_receipt(self, client):
        lines = [
            ReceiptLine(
                line_number=1, entry_id=1, operation=ReceiptOperation.COBRO,
                applied_amount=Decimal("600.00"), status=ReceiptLineStatus.PROCESSED,
            ),
            ReceiptLine(
                line_number=2, entry_id=2, operation=ReceiptOperation.COBRO,
                applied_amount=Decimal("0.00"), status=ReceiptLineStatus.ERROR,
                error_code="TERMINAL_STATE", error_message="Entry 2 is voided",
            ),
        ]
        receipt = Receipt(
            id=5, receipt_number="RC-2026-000001", receipt_date=date(2026, 3, 15),
            method="cash", account_id=4, gross_inflow=Decimal("600.00"),
            gross_outflow=Decimal("0.00"), net_amount=Decimal("600.00"),
            net_direction=CashDirection.INFLOW,
        )
        process = AsyncMock(return_value=ReceiptResult(receipt=receipt, lines=lines))

        with patch("app.services.ledger.receipts.process_receipt", process):
            resp = client.post("/api/ledger/receipts", json={
                "account_id": 4,
                "method": "cash",
                "lines": [
                    {"entry_id": 1, "operation": "cobro", "amount": "600"},
                    {"entry_id": 2, "operation": "cobro", "amount": "300"},
                ],
            })

        assert resp.status_code == 201
        data = resp.json()
        assert data["receipt_number"] == "RC-2026-000001"
        assert data["net_direction"] == "inflow"
        assert [ln["status"] for ln in data["lines"]] == ["processed", "error"]
        items = process.call_args.args[1]
        assert items[0].operation == ReceiptOperation.COBRO
        assert items[1].amount == Decimal("300")
