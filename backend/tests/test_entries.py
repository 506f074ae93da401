"""Tests for the entry lifecycle service.

Tests cover:
- Line validation (empty, unbalanced, both sides, negative, zero total)
- Entry creation (status, amounts, audit event, unknown accounts)
- Transition table
- History and list lookups
- Index adjustment (rescaling, rounding residue, state guard)
- Invoicing (PENDING_INVOICE -> INVOICED)
"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from app.models.ledger import AuditAction, EntryStatus, LedgerEntry
from app.services.ledger.entries import (
    TRANSITIONS,
    _validate_lines,
    apply_index_adjustment,
    can_transition,
    create_entry,
    get_entry_history,
    list_entries,
    mark_invoiced,
)
from app.services.ledger.errors import (
    EntryNotFoundError,
    ErrorKind,
    LedgerValidationError,
    StateConflictError,
)


# ===================================================================
# Line validation (pure functions, no DB)
# ===================================================================


class TestLineValidation:

    def test_balanced_lines(self):
        lines = [
            {"account_id": 1, "debit": 1000},
            {"account_id": 2, "credit": 900},
            {"account_id": 3, "credit": 100},
        ]
        dr, cr = _validate_lines(lines)
        assert dr == Decimal("1000.00")
        assert cr == Decimal("1000.00")

    def test_empty_lines_raise(self):
        with pytest.raises(LedgerValidationError) as exc:
            _validate_lines([])
        assert exc.value.code == "EMPTY_LINES"
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_unbalanced_raises(self):
        lines = [{"account_id": 1, "debit": 1000}, {"account_id": 2, "credit": 999}]
        with pytest.raises(LedgerValidationError, match="not balanced") as exc:
            _validate_lines(lines)
        assert exc.value.code == "UNBALANCED"
        assert exc.value.context["total_debit"] == Decimal("1000.00")

    def test_penny_difference_raises(self):
        lines = [{"account_id": 1, "debit": "1000.01"}, {"account_id": 2, "credit": "1000.00"}]
        with pytest.raises(LedgerValidationError, match="not balanced"):
            _validate_lines(lines)

    def test_line_with_both_sides_raises(self):
        lines = [{"account_id": 1, "debit": 10, "credit": 10}]
        with pytest.raises(LedgerValidationError) as exc:
            _validate_lines(lines)
        assert exc.value.code == "INVALID_LINE"

    def test_negative_amount_raises(self):
        lines = [{"account_id": 1, "debit": -5}, {"account_id": 2, "credit": -5}]
        with pytest.raises(LedgerValidationError, match="negative"):
            _validate_lines(lines)

    def test_zero_total_raises(self):
        lines = [{"account_id": 1, "debit": 0}, {"account_id": 2, "credit": 0}]
        with pytest.raises(LedgerValidationError, match="zero total"):
            _validate_lines(lines)

    def test_missing_account_raises(self):
        with pytest.raises(LedgerValidationError, match="no account"):
            _validate_lines([{"debit": 10}, {"account_id": 2, "credit": 10}])


# ===================================================================
# Transition table
# ===================================================================


class TestTransitions:

    @pytest.mark.parametrize("terminal", [
        EntryStatus.VOIDED, EntryStatus.FORGIVEN, EntryStatus.SETTLED, EntryStatus.INVOICED,
    ])
    def test_terminal_states_have_no_exits(self, terminal):
        assert TRANSITIONS[terminal] == frozenset()

    def test_payment_edges(self):
        assert can_transition(EntryStatus.PENDING, EntryStatus.PAID)
        assert can_transition(EntryStatus.PARTIALLY_PAID, EntryStatus.PARTIALLY_PAID)
        assert not can_transition(EntryStatus.PAID, EntryStatus.PARTIALLY_PAID)

    def test_settled_only_from_paid(self):
        assert can_transition(EntryStatus.PAID, EntryStatus.SETTLED)
        assert not can_transition(EntryStatus.PARTIALLY_PAID, EntryStatus.SETTLED)

    def test_adjustment_edge(self):
        assert can_transition(EntryStatus.PENDING_ADJUSTMENT, EntryStatus.PENDING)
        assert not can_transition(EntryStatus.PENDING_ADJUSTMENT, EntryStatus.PAID)

    def test_every_status_is_declared(self):
        assert set(TRANSITIONS) == set(EntryStatus)


# ===================================================================
# Creation (mock DB)
# ===================================================================


class TestCreateEntry:

    LINES = [
        {"account_id": 1, "debit": "1000", "counterparty_id": 10, "description": "Rent"},
        {"account_id": 2, "credit": "900", "counterparty_id": 20},
        {"account_id": 3, "credit": "100", "counterparty_id": 30},
    ]

    @pytest.mark.asyncio
    async def test_creates_pending_entry(self, db):
        with patch("app.services.ledger.chart.validate_account_ids", new_callable=AsyncMock):
            entry = await create_entry(
                db,
                lines=self.LINES,
                accrual_date=date(2026, 3, 1),
                due_date=date(2026, 3, 11),
                category="Rent",
                description="Rent 03/2026",
                contract_id=7,
                created_by=99,
            )

        assert entry.status == EntryStatus.PENDING
        assert entry.original_amount == Decimal("1000.00")
        assert entry.current_amount == Decimal("1000.00")
        assert [ln.line_number for ln in entry.lines] == [1, 2, 3]
        assert entry.lines[0].paid_to_date == Decimal("0.00")
        assert entry.is_balanced
        db.add.assert_called_once_with(entry)
        db.flush.assert_awaited()

        assert len(entry.audit_events) == 1
        event = entry.audit_events[0]
        assert event.action == AuditAction.CREATED
        assert event.previous_status is None
        assert event.new_status == EntryStatus.PENDING
        assert event.actor_id == 99

    @pytest.mark.asyncio
    async def test_awaiting_adjustment_starts_pending_adjustment(self, db):
        with patch("app.services.ledger.chart.validate_account_ids", new_callable=AsyncMock):
            entry = await create_entry(
                db,
                lines=self.LINES,
                accrual_date=date(2026, 3, 1),
                due_date=date(2026, 3, 11),
                category="Rent",
                description="Rent 03/2026",
                awaiting_adjustment=True,
                adjustment_rule="ICL",
            )
        assert entry.status == EntryStatus.PENDING_ADJUSTMENT
        assert entry.is_adjustable is True

    @pytest.mark.asyncio
    async def test_awaiting_invoice_starts_pending_invoice(self, db):
        with patch("app.services.ledger.chart.validate_account_ids", new_callable=AsyncMock):
            entry = await create_entry(
                db,
                lines=self.LINES,
                accrual_date=date(2026, 3, 1),
                due_date=date(2026, 3, 11),
                category="Rent",
                description="Rent 03/2026",
                awaiting_invoice=True,
            )
        assert entry.status == EntryStatus.PENDING_INVOICE
        assert entry.audit_events[0].new_status == EntryStatus.PENDING_INVOICE

    @pytest.mark.asyncio
    async def test_cannot_await_adjustment_and_invoice(self, db):
        with patch("app.services.ledger.chart.validate_account_ids", new_callable=AsyncMock):
            with pytest.raises(LedgerValidationError) as exc:
                await create_entry(
                    db,
                    lines=self.LINES,
                    accrual_date=date(2026, 3, 1),
                    due_date=date(2026, 3, 11),
                    category="Rent",
                    description="Rent 03/2026",
                    awaiting_adjustment=True,
                    awaiting_invoice=True,
                )
        assert exc.value.code == "INVALID_STATE"
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_lines_never_reach_the_db(self, db):
        with pytest.raises(LedgerValidationError):
            await create_entry(
                db, lines=[], accrual_date=date(2026, 3, 1), due_date=date(2026, 3, 1),
                category="Rent", description="x",
            )
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_account_rejected(self, db):
        result = MagicMock()
        result.scalars.return_value.all.return_value = [1, 2]
        db.execute.return_value = result

        with pytest.raises(LedgerValidationError) as exc:
            await create_entry(
                db, lines=self.LINES, accrual_date=date(2026, 3, 1), due_date=date(2026, 3, 11),
                category="Rent", description="Rent",
            )
        assert exc.value.code == "UNKNOWN_ACCOUNT"
        assert exc.value.context["account_ids"] == [3]
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_due_before_accrual_rejected(self, db):
        with patch("app.services.ledger.chart.validate_account_ids", new_callable=AsyncMock):
            with pytest.raises(LedgerValidationError) as exc:
                await create_entry(
                    db, lines=self.LINES, accrual_date=date(2026, 3, 10), due_date=date(2026, 3, 1),
                    category="Rent", description="Rent",
                )
        assert exc.value.code == "INVALID_DATES"


# ===================================================================
# Lookups
# ===================================================================


class TestLookups:

    @pytest.mark.asyncio
    async def test_history_of_missing_entry(self, db, load_entry):
        load_entry()
        with pytest.raises(EntryNotFoundError) as exc:
            await get_entry_history(db, 404)
        assert exc.value.kind == ErrorKind.NOT_FOUND
        assert exc.value.entry_id == 404

    @pytest.mark.asyncio
    async def test_history_returns_events(self, db, load_entry, rent_entry):
        load_entry(rent_entry)
        events = [MagicMock(), MagicMock()]
        result = MagicMock()
        result.scalars.return_value.all.return_value = events
        db.execute.return_value = result

        assert await get_entry_history(db, rent_entry.id) == events

    @pytest.mark.asyncio
    async def test_list_entries_returns_page_and_total(self, db, make_entry):
        e1 = make_entry(debits=[(10, "100")], credits=[(20, "100")], entry_id=1)
        e2 = make_entry(debits=[(10, "200")], credits=[(20, "200")], entry_id=2)

        count_result = MagicMock()
        count_result.scalar_one.return_value = 12
        page_result = MagicMock()
        page_result.scalars.return_value.all.return_value = [e2, e1]
        db.execute.side_effect = [count_result, page_result]

        items, total = await list_entries(
            db, counterparty_id=10, pending_only=True, page=2, page_size=10
        )
        assert total == 12
        assert items == [e2, e1]
        assert db.execute.await_count == 2


# ===================================================================
# Index adjustment
# ===================================================================


class TestIndexAdjustment:

    @pytest.mark.asyncio
    async def test_rescales_lines_and_releases_entry(self, db, load_entry, make_entry, audited):
        entry = make_entry(
            debits=[(10, "1000")], credits=[(20, "900"), (30, "100")],
            status=EntryStatus.PENDING_ADJUSTMENT,
        )
        load_entry(entry)

        result = await apply_index_adjustment(
            db, entry.id, index_value=Decimal("115"), base_index_value=Decimal("100"), actor_id=5,
        )

        assert result.status == EntryStatus.PENDING
        assert result.current_amount == Decimal("1150.00")
        assert result.original_amount == Decimal("1000")
        assert [ln.debit for ln in result.debit_lines] == [Decimal("1150.00")]
        assert [ln.credit for ln in result.credit_lines] == [Decimal("1035.00"), Decimal("115.00")]
        assert result.is_balanced

        (event,) = audited(db)
        assert event.action == AuditAction.INDEX_ADJUSTMENT
        assert event.previous_status == EntryStatus.PENDING_ADJUSTMENT
        assert event.new_status == EntryStatus.PENDING

    @pytest.mark.asyncio
    async def test_rounding_residue_lands_on_last_line(self, db, load_entry, make_entry):
        entry = make_entry(
            debits=[(10, "100")], credits=[(20, "33.33"), (30, "33.33"), (40, "33.34")],
            status=EntryStatus.PENDING_ADJUSTMENT,
        )
        load_entry(entry)

        result = await apply_index_adjustment(
            db, entry.id, index_value=Decimal("1.005"), base_index_value=Decimal("1"),
        )
        assert result.current_amount == Decimal("100.50")
        assert result.total_credits == Decimal("100.50")
        assert result.is_balanced

    @pytest.mark.asyncio
    async def test_only_from_pending_adjustment(self, db, load_entry, rent_entry, audited):
        load_entry(rent_entry)
        with pytest.raises(StateConflictError) as exc:
            await apply_index_adjustment(
                db, rent_entry.id, index_value=Decimal("2"), base_index_value=Decimal("1"),
            )
        assert exc.value.code == "INVALID_STATE"
        assert rent_entry.current_amount == Decimal("1000")
        assert audited(db) == []

    @pytest.mark.asyncio
    async def test_non_positive_index_rejected(self, db):
        with pytest.raises(LedgerValidationError) as exc:
            await apply_index_adjustment(
                db, 1, index_value=Decimal("0"), base_index_value=Decimal("100"),
            )
        assert exc.value.code == "INVALID_INDEX"


class TestMarkInvoiced:

    @pytest.mark.asyncio
    async def test_pending_invoice_becomes_invoiced(self, db, load_entry, make_entry, audited):
        entry = make_entry(
            debits=[(10, "1000")], credits=[(20, "1000")], status=EntryStatus.PENDING_INVOICE,
        )
        load_entry(entry)

        result = await mark_invoiced(db, 1, invoice_reference="FC-A-0001-00000042", actor_id=5)

        assert result.status == EntryStatus.INVOICED
        (event,) = audited(db)
        assert event.action == AuditAction.INVOICED
        assert event.previous_status == EntryStatus.PENDING_INVOICE
        assert event.details["invoice_reference"] == "FC-A-0001-00000042"
        assert event.actor_id == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [EntryStatus.PENDING, EntryStatus.PAID, EntryStatus.INVOICED])
    async def test_only_from_pending_invoice(self, db, load_entry, rent_entry, audited, status):
        rent_entry.status = status
        load_entry(rent_entry)
        with pytest.raises(StateConflictError) as exc:
            await mark_invoiced(db, 1)
        assert exc.value.code == "INVALID_STATE"
        assert rent_entry.status == status
        assert audited(db) == []
