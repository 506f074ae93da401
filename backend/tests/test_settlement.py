"""Tests for the proportional liquidation engine.

Tests cover:
- Entitlement math (proportional, capped at credit, rounded down)
- Catch-up payouts after further collections
- ALREADY_SETTLED on a repeated call with no new cash
- State and counterparty guards
- The SETTLED transition only once the debtor paid in full and every
  creditor has received their whole share
"""

import pytest
from decimal import Decimal

from app.models.cash_account import CashDirection
from app.models.ledger import AuditAction, EntryStatus
from app.services.ledger.errors import LedgerValidationError, StateConflictError
from app.services.ledger.payments import register_payment
from app.services.ledger.settlement import (
    credit_positions,
    entitlement,
    is_fully_settled,
    settle,
    settle_creditor,
)

D = Decimal


# ===================================================================
# Entitlement (pure)
# ===================================================================


class TestEntitlement:

    def test_proportional_share(self):
        assert entitlement(D("900"), D("600"), D("1000")) == D("540.00")
        assert entitlement(D("100"), D("600"), D("1000")) == D("60.00")

    def test_capped_at_credit_once_fully_collected(self):
        assert entitlement(D("900"), D("1000"), D("1000")) == D("900")

    def test_nothing_collected(self):
        assert entitlement(D("900"), D("0"), D("1000")) == D("0.00")

    def test_rounds_down_so_payouts_never_exceed_collected(self):
        credits = [D("333.33"), D("333.33"), D("333.34")]
        collected = D("100")
        shares = [entitlement(c, collected, D("1000")) for c in credits]
        assert shares == [D("33.33"), D("33.33"), D("33.33")]
        assert sum(shares) <= collected

    def test_positions_report_share_and_availability(self, rent_entry):
        rent_entry.debit_lines[0].paid_to_date = D("600")
        rent_entry.credit_lines[0].settled_to_date = D("500")

        landlord, agency = credit_positions(rent_entry)
        assert landlord.share == D("0.9")
        assert landlord.entitlement == D("540.00")
        assert landlord.available == D("40.00")
        assert agency.available == D("60.00")


# ===================================================================
# settle() on in-memory entries
# ===================================================================


class TestSettle:

    def test_pays_available_and_writes_absolute_entitlement(self, rent_entry):
        rent_entry.status = EntryStatus.PARTIALLY_PAID
        rent_entry.debit_lines[0].paid_to_date = D("600")

        result = settle(rent_entry, 20)
        assert result.payout == D("540.00")
        assert result.collected == D("600")
        assert rent_entry.credit_lines[0].settled_to_date == D("540.00")
        assert rent_entry.credit_lines[1].settled_to_date == D("0.00")

    def test_repeat_without_new_cash_is_rejected(self, rent_entry):
        rent_entry.status = EntryStatus.PARTIALLY_PAID
        rent_entry.debit_lines[0].paid_to_date = D("600")
        settle(rent_entry, 20)

        with pytest.raises(StateConflictError) as exc:
            settle(rent_entry, 20)
        assert exc.value.code == "ALREADY_SETTLED"
        assert rent_entry.credit_lines[0].settled_to_date == D("540.00")

    def test_unknown_counterparty(self, rent_entry):
        rent_entry.status = EntryStatus.PAID
        with pytest.raises(LedgerValidationError) as exc:
            settle(rent_entry, 999)
        assert exc.value.code == "NO_MATCHING_LINES"

    @pytest.mark.parametrize("status", [
        EntryStatus.PENDING, EntryStatus.VOIDED, EntryStatus.FORGIVEN, EntryStatus.SETTLED,
    ])
    def test_invalid_states(self, rent_entry, status):
        rent_entry.status = status
        with pytest.raises(StateConflictError) as exc:
            settle(rent_entry, 20)
        assert exc.value.code == "INVALID_STATE"

    def test_forgiven_amount_is_not_distributed(self, rent_entry):
        rent_entry.status = EntryStatus.PARTIALLY_PAID
        debit = rent_entry.debit_lines[0]
        debit.paid_to_date = D("500")
        debit.forgiven_to_date = D("300")

        assert settle(rent_entry, 20).payout == D("450.00")

    def test_fully_settled_requires_paid_status(self, rent_entry):
        rent_entry.status = EntryStatus.PARTIALLY_PAID
        for ln in rent_entry.credit_lines:
            ln.settled_to_date = ln.credit
        assert not is_fully_settled(rent_entry)


# ===================================================================
# settle_creditor() through the unit of work (mock DB)
# ===================================================================


class TestSettleCreditor:

    @pytest.mark.asyncio
    async def test_records_outflow_and_audit(self, db, load_entry, rent_entry, cash, audited):
        rent_entry.status = EntryStatus.PARTIALLY_PAID
        rent_entry.debit_lines[0].paid_to_date = D("600")
        load_entry(rent_entry)

        result = await settle_creditor(
            db, 1, counterparty_id=30, method="transfer", account_id=4, actor_id=2,
        )

        assert result.payout == D("60.00")
        args, kwargs = cash.call_args
        assert args[1:] == (4, D("60.00"), CashDirection.OUTFLOW)

        (event,) = audited(db)
        assert event.action == AuditAction.SETTLEMENT
        assert event.amount == D("60.00")
        assert event.details["counterparty_id"] == 30
        assert event.details["collected"] == "600.00"
        assert event.new_status == EntryStatus.PARTIALLY_PAID

    @pytest.mark.asyncio
    async def test_rejection_leaves_no_audit_event(self, db, load_entry, rent_entry, cash, audited):
        load_entry(rent_entry)  # still PENDING
        with pytest.raises(StateConflictError):
            await settle_creditor(db, 1, counterparty_id=20, method="transfer", account_id=4)
        cash.assert_not_awaited()
        assert audited(db) == []


class TestRentScenario:
    """Tenant owes 1000; landlord is owed 900 and the agency 100."""

    @pytest.mark.asyncio
    async def test_partial_then_full_collection(self, db, load_entry, rent_entry):
        load_entry(rent_entry)
        tenant, landlord, agency = 10, 20, 30

        await register_payment(db, 1, amount=D("600"), method="cash")

        agency_first = await settle_creditor(db, 1, counterparty_id=agency, method="transfer")
        landlord_first = await settle_creditor(db, 1, counterparty_id=landlord, method="transfer")
        assert agency_first.payout == D("60.00")
        assert landlord_first.payout == D("540.00")
        assert rent_entry.status == EntryStatus.PARTIALLY_PAID

        with pytest.raises(StateConflictError, match="already settled"):
            await settle_creditor(db, 1, counterparty_id=landlord, method="transfer")

        await register_payment(db, 1, amount=D("400"), method="cash")
        assert rent_entry.status == EntryStatus.PAID

        agency_second = await settle_creditor(db, 1, counterparty_id=agency, method="transfer")
        assert agency_second.payout == D("40.00")
        assert rent_entry.status == EntryStatus.PAID

        landlord_second = await settle_creditor(
            db, 1, counterparty_id=landlord, method="transfer", voucher="TR-12",
        )
        assert landlord_second.payout == D("360.00")
        assert rent_entry.status == EntryStatus.SETTLED
        assert rent_entry.settlement_method == "transfer"
        assert rent_entry.settlement_voucher == "TR-12"

        settled = [ln.settled_to_date for ln in rent_entry.credit_lines]
        assert settled == [D("900"), D("100")]
        assert tenant == rent_entry.debit_lines[0].counterparty_id

    @pytest.mark.asyncio
    async def test_settled_to_date_never_decreases(self, db, load_entry, rent_entry):
        load_entry(rent_entry)
        history = []
        for amount in ("100", "250", "333.33", "316.67"):
            await register_payment(db, 1, amount=D(amount), method="cash")
            for creditor in (20, 30):
                try:
                    await settle_creditor(db, 1, counterparty_id=creditor, method="cash")
                except StateConflictError:
                    pass
            history.append([ln.settled_to_date for ln in rent_entry.credit_lines])

        for before, after in zip(history, history[1:]):
            assert all(a >= b for a, b in zip(after, before))
        assert sum(history[-1]) == D("1000")
        assert rent_entry.status == EntryStatus.SETTLED
