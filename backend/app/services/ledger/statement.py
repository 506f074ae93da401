"""Account statement projector.

A read model over stored entries: for one counterparty, every line that
names it becomes a movement.  Debit lines show what the counterparty still
owes; credit lines show what it is owed out of collected cash, derived with
the same :func:`~app.services.ledger.settlement.entitlement` the
liquidation engine uses, so the statement always agrees with what a
liquidation at that instant would pay.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.ledger import ZERO, EntryStatus, LedgerEntry, LedgerLine, LineSide, _amount
from app.services.ledger.settlement import SETTLEABLE_STATUSES, credit_positions

logger = logging.getLogger(__name__)


@dataclass
class StatementMovement:
    entry_id: int
    line_number: int
    side: LineSide
    accrual_date: date
    due_date: date
    category: str
    description: str
    entry_status: EntryStatus
    original_amount: Decimal
    # Debit side
    paid: Decimal = ZERO
    forgiven: Decimal = ZERO
    pending: Decimal = ZERO
    # Credit side
    collected_from_debtor: Decimal = ZERO
    proportion: Decimal = ZERO
    entitlement: Decimal = ZERO
    already_settled: Decimal = ZERO
    available: Decimal = ZERO

    @property
    def open_amount(self) -> Decimal:
        return self.pending if self.side == LineSide.DEBIT else self.available

    @property
    def resolved(self) -> bool:
        """Nothing left to collect (debit) or to pay out (credit)."""
        if self.side == LineSide.DEBIT:
            return self.pending == 0
        return self.already_settled >= self.original_amount

    @property
    def partial(self) -> bool:
        if self.resolved:
            return False
        if self.side == LineSide.DEBIT:
            return self.paid + self.forgiven > 0
        return self.already_settled > 0


@dataclass
class StatementTotals:
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_settled: Decimal = ZERO
    total_pending: Decimal = ZERO
    total_available: Decimal = ZERO
    resolved_count: int = 0
    partial_count: int = 0
    open_count: int = 0

    @property
    def net_balance(self) -> Decimal:
        """Positive: the counterparty owes us.  Negative: we owe it."""
        return self.total_pending - self.total_available


@dataclass
class Statement:
    counterparty_id: int
    cutoff: date | None
    movements: list[StatementMovement] = field(default_factory=list)
    totals: StatementTotals = field(default_factory=StatementTotals)


def _debit_movement(entry: LedgerEntry, ln: LedgerLine) -> StatementMovement:
    debit = _amount(ln.debit)
    paid = _amount(ln.paid_to_date)
    forgiven = _amount(ln.forgiven_to_date)
    return StatementMovement(
        entry_id=entry.id,
        line_number=ln.line_number,
        side=LineSide.DEBIT,
        accrual_date=entry.accrual_date,
        due_date=entry.due_date,
        category=entry.category,
        description=ln.description or entry.description,
        entry_status=entry.status,
        original_amount=debit,
        paid=paid,
        forgiven=forgiven,
        pending=debit - paid - forgiven,
    )


def _entry_movements(entry: LedgerEntry, counterparty_id: int) -> list[StatementMovement]:
    movements = [
        _debit_movement(entry, ln)
        for ln in entry.debit_lines
        if ln.counterparty_id == counterparty_id
    ]
    collected = entry.collected
    # Entitlement stays visible on closed entries; only a liquidable entry has anything available
    settleable = entry.status in SETTLEABLE_STATUSES
    for p in credit_positions(entry):
        ln = p.line
        if ln.counterparty_id != counterparty_id:
            continue
        movements.append(StatementMovement(
            entry_id=entry.id,
            line_number=ln.line_number,
            side=LineSide.CREDIT,
            accrual_date=entry.accrual_date,
            due_date=entry.due_date,
            category=entry.category,
            description=ln.description or entry.description,
            entry_status=entry.status,
            original_amount=_amount(ln.credit),
            collected_from_debtor=collected,
            proportion=p.share,
            entitlement=p.entitlement,
            already_settled=p.settled,
            available=p.available if settleable else ZERO,
        ))
    return sorted(movements, key=lambda m: m.line_number)


def build_statement(
    entries: list[LedgerEntry],
    counterparty_id: int,
    *,
    cutoff: date | None = None,
    date_from: date | None = None,
    pending_only: bool = False,
    include_voided: bool = False,
) -> Statement:
    """Project *entries* into a statement for *counterparty_id*.

    Pure: reads the entries, never mutates them.
    """
    statement = Statement(counterparty_id=counterparty_id, cutoff=cutoff)
    totals = statement.totals

    for entry in sorted(entries, key=lambda e: (e.accrual_date, e.id or 0)):
        if cutoff is not None and entry.accrual_date > cutoff:
            continue
        if date_from is not None and entry.accrual_date < date_from:
            continue
        if entry.status == EntryStatus.VOIDED and not include_voided:
            continue

        for m in _entry_movements(entry, counterparty_id):
            if pending_only and m.open_amount <= 0:
                continue
            statement.movements.append(m)

            if m.side == LineSide.DEBIT:
                totals.total_debit += m.original_amount
                totals.total_paid += m.paid
                totals.total_pending += m.pending
            else:
                totals.total_credit += m.original_amount
                totals.total_settled += m.already_settled
                totals.total_available += m.available

            if m.resolved:
                totals.resolved_count += 1
            elif m.partial:
                totals.partial_count += 1
            else:
                totals.open_count += 1

    return statement


async def _load_entries_for_counterparty(
    db: AsyncSession,
    counterparty_id: int,
    *,
    cutoff: date | None,
    date_from: date | None,
) -> list[LedgerEntry]:
    q = (
        select(LedgerEntry)
        .where(
            LedgerEntry.id.in_(
                select(LedgerLine.entry_id).where(LedgerLine.counterparty_id == counterparty_id)
            )
        )
        .options(selectinload(LedgerEntry.lines))
        .order_by(LedgerEntry.accrual_date, LedgerEntry.id)
    )
    if cutoff is not None:
        q = q.where(LedgerEntry.accrual_date <= cutoff)
    if date_from is not None:
        q = q.where(LedgerEntry.accrual_date >= date_from)
    result = await db.execute(q)
    return list(result.scalars().all())


async def get_statement(
    db: AsyncSession,
    counterparty_id: int,
    *,
    cutoff: date | None = None,
    date_from: date | None = None,
    pending_only: bool = False,
    include_voided: bool = False,
) -> Statement:
    entries = await _load_entries_for_counterparty(
        db, counterparty_id, cutoff=cutoff, date_from=date_from
    )
    statement = build_statement(
        entries,
        counterparty_id,
        cutoff=cutoff,
        date_from=date_from,
        pending_only=pending_only,
        include_voided=include_voided,
    )
    logger.debug(
        "Statement for counterparty %s: %d movements over %d entries",
        counterparty_id, len(statement.movements), len(entries),
    )
    return statement
