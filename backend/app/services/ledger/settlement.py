"""Proportional liquidation engine.

Creditors are paid out of what the debtor actually paid, never out of what
was invoiced.  Each credit line's entitlement is its share of the entry's
credits applied to the cash collected so far:

    entitlement = collected * credit / total_credit

rounded down to the cent so the sum of payouts never exceeds the cash on
hand, and exactly ``credit`` once the debtor has paid in full.
``settled_to_date`` is always written absolutely from a freshly derived
entitlement, which makes repeated calls idempotent and lets a creditor
catch up after further payments.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.cash_account import CashDirection
from app.models.ledger import (
    ZERO,
    AuditAction,
    EntryStatus,
    LedgerEntry,
    LedgerLine,
    _amount,
)
from app.services.ledger.concurrency import run_entry_operation
from app.services.ledger.entries import ensure_transition
from app.services.ledger.errors import LedgerValidationError, StateConflictError
from app.services.ledger.store import append_audit_event, floor_money, move_cash

logger = logging.getLogger(__name__)

SETTLEABLE_STATUSES = frozenset({EntryStatus.PAID, EntryStatus.PARTIALLY_PAID})


def entitlement(credit: Decimal, collected: Decimal, total_credit: Decimal) -> Decimal:
    """A credit line's cumulative entitlement given the cash collected."""
    credit = _amount(credit)
    if total_credit <= 0 or credit <= 0 or collected <= 0:
        return ZERO
    if collected >= total_credit:
        return credit
    return floor_money(collected * credit / total_credit)


@dataclass(frozen=True)
class CreditPosition:
    """Derived settlement figures for one credit line."""

    line: LedgerLine
    share: Decimal
    entitlement: Decimal
    settled: Decimal

    @property
    def available(self) -> Decimal:
        return max(self.entitlement - self.settled, ZERO)


def credit_positions(entry: LedgerEntry) -> list[CreditPosition]:
    collected = entry.collected
    total_credit = entry.total_credits
    positions = []
    for ln in entry.credit_lines:
        credit = _amount(ln.credit)
        positions.append(CreditPosition(
            line=ln,
            share=(credit / total_credit) if total_credit > 0 else ZERO,
            entitlement=entitlement(credit, collected, total_credit),
            settled=_amount(ln.settled_to_date),
        ))
    return positions


def is_fully_settled(entry: LedgerEntry) -> bool:
    """Debtor paid in full and every creditor received their whole share."""
    if entry.status != EntryStatus.PAID:
        return False
    return all(p.settled >= p.entitlement for p in credit_positions(entry))


@dataclass
class SettlementResult:
    entry: LedgerEntry
    payout: Decimal
    collected: Decimal


def settle(entry: LedgerEntry, counterparty_id: int) -> SettlementResult:
    """Bring *counterparty_id*'s credit lines up to their entitlement.

    Mutates the lines in place and returns the payout; status handling is
    left to the caller.
    """
    if entry.status not in SETTLEABLE_STATUSES:
        raise StateConflictError(
            f"Entry {entry.id} is {entry.status.value}; only paid or partially paid entries can be liquidated",
            code="INVALID_STATE",
            entry_id=entry.id,
            status=entry.status,
        )

    positions = [p for p in credit_positions(entry) if p.line.counterparty_id == counterparty_id]
    if not positions:
        raise LedgerValidationError(
            f"Entry {entry.id} has no credit lines for counterparty {counterparty_id}",
            code="NO_MATCHING_LINES",
            entry_id=entry.id,
            counterparty_id=counterparty_id,
        )

    payable = [p for p in positions if p.available > 0]
    if not payable:
        raise StateConflictError(
            f"Counterparty {counterparty_id} is already settled on entry {entry.id}",
            code="ALREADY_SETTLED",
            entry_id=entry.id,
            counterparty_id=counterparty_id,
            collected=entry.collected,
        )

    payout = ZERO
    for p in payable:
        p.line.settled_to_date = p.entitlement
        payout += p.available
    return SettlementResult(entry=entry, payout=payout, collected=entry.collected)


async def settle_creditor(
    db: AsyncSession,
    entry_id: int,
    *,
    counterparty_id: int,
    method: str,
    settlement_date: date | None = None,
    voucher: str | None = None,
    account_id: int | None = None,
    actor_id: int | None = None,
) -> SettlementResult:
    """Pay out to one creditor whatever they are owed from collected cash."""
    settlement_date = settlement_date or date.today()

    async def _settle(entry: LedgerEntry) -> SettlementResult:
        previous_status = entry.status
        result = settle(entry, counterparty_id)

        if account_id is not None:
            await move_cash(
                db,
                account_id,
                result.payout,
                CashDirection.OUTFLOW,
                entry=entry,
                description=f"Liquidation to counterparty {counterparty_id} on entry {entry.id}",
                actor_id=actor_id,
            )

        if is_fully_settled(entry):
            ensure_transition(entry, EntryStatus.SETTLED)
            entry.status = EntryStatus.SETTLED
            entry.settlement_date = settlement_date
            entry.settlement_method = method
            entry.settlement_voucher = voucher

        append_audit_event(
            db,
            entry,
            action=AuditAction.SETTLEMENT,
            previous_status=previous_status,
            actor_id=actor_id,
            amount=result.payout,
            note=f"Liquidation to counterparty {counterparty_id} via {method}",
            details={
                "counterparty_id": counterparty_id,
                "method": method,
                "settlement_date": settlement_date.isoformat(),
                "voucher": voucher,
                "collected": str(result.collected),
                "account_id": account_id,
            },
        )
        logger.info(
            "Liquidated %s to counterparty %s on entry %s (collected=%s, status=%s)",
            result.payout, counterparty_id, entry.id, result.collected, entry.status.value,
        )
        return result

    return await run_entry_operation(db, entry_id, _settle, name="liquidation")
