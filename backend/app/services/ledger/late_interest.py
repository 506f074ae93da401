"""Late interest ("mora") on overdue entries.

Interest is simple and daily: ``outstanding * daily_rate * days``, counted
from the due date or from the last day an earlier charge already covered
(``late_interest_through`` on the source entry), whichever is later.
Each charge is a new balanced entry billed to the same debtor and split
among the source entry's creditors in their original proportions, so the
liquidation engine pays it out the same way as the rent it came from.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import or_, select, func as sa_func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.ledger import EntryStatus, LedgerEntry, _amount
from app.services.ledger import chart
from app.services.ledger.concurrency import run_entry_operation
from app.services.ledger.entries import create_entry
from app.services.ledger.errors import LedgerError, LedgerValidationError
from app.services.ledger.store import floor_money, to_money

logger = logging.getLogger(__name__)

LATE_INTEREST_CATEGORY = "Late Interest"


@dataclass
class OverdueEntry:
    entry: LedgerEntry
    days_overdue: int
    days_charged: int
    outstanding: Decimal
    interest: Decimal


@dataclass
class LateInterestOutcome:
    entry_id: int
    interest_entry_id: int | None = None
    amount: Decimal | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


@dataclass
class LateInterestRun:
    as_of: date
    daily_rate: Decimal
    outcomes: list[LateInterestOutcome] = field(default_factory=list)

    @property
    def total_interest(self) -> Decimal:
        return sum((o.amount for o in self.outcomes if o.ok and o.amount), Decimal("0.00"))


def compute_interest(outstanding: Decimal, daily_rate: Decimal, days: int) -> Decimal:
    if days <= 0 or outstanding <= 0:
        return Decimal("0.00")
    return to_money(outstanding * daily_rate * days)


def overdue_position(entry: LedgerEntry, as_of: date, daily_rate: Decimal) -> OverdueEntry:
    days = (as_of - entry.due_date).days
    charged_from = max(entry.due_date, entry.late_interest_through or entry.due_date)
    days_charged = (as_of - charged_from).days
    outstanding = entry.outstanding
    return OverdueEntry(
        entry=entry,
        days_overdue=max(days, 0),
        days_charged=max(days_charged, 0),
        outstanding=outstanding,
        interest=compute_interest(outstanding, daily_rate, days_charged),
    )


async def find_overdue_entries(
    db: AsyncSession,
    *,
    as_of: date | None = None,
    daily_rate: Decimal | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[OverdueEntry], int]:
    """Open entries past their due date with a balance still owed."""
    as_of = as_of or date.today()
    rate = daily_rate if daily_rate is not None else settings.late_interest_daily_rate

    q = select(LedgerEntry).where(
        LedgerEntry.status.in_([EntryStatus.PENDING, EntryStatus.PARTIALLY_PAID]),
        LedgerEntry.due_date < as_of,
        LedgerEntry.category != LATE_INTEREST_CATEGORY,
        or_(
            LedgerEntry.late_interest_through.is_(None),
            LedgerEntry.late_interest_through < as_of,
        ),
    )
    total = (await db.execute(select(sa_func.count()).select_from(q.subquery()))).scalar_one()

    result = await db.execute(
        q.options(selectinload(LedgerEntry.lines))
        .order_by(LedgerEntry.due_date, LedgerEntry.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [
        overdue_position(entry, as_of, rate)
        for entry in result.scalars().all()
        if entry.outstanding > 0
    ]
    return items, total


def _split_credits(entry: LedgerEntry, interest: Decimal) -> list[dict]:
    """Credit lines for *interest* in the source entry's creditor proportions."""
    credit_lines = sorted(entry.credit_lines, key=lambda ln: ln.line_number)
    total_credit = entry.total_credits
    lines = []
    running = Decimal("0.00")
    for ln in credit_lines[:-1]:
        part = floor_money(interest * _amount(ln.credit) / total_credit)
        running += part
        lines.append({
            "account_id": ln.account_id,
            "credit": part,
            "counterparty_id": ln.counterparty_id,
            "description": f"Late interest: {ln.description}",
        })
    last = credit_lines[-1]
    lines.append({
        "account_id": last.account_id,
        "credit": interest - running,
        "counterparty_id": last.counterparty_id,
        "description": f"Late interest: {last.description}",
    })
    return [ln for ln in lines if ln["credit"] > 0]


async def _charge_entry(
    db: AsyncSession,
    entry: LedgerEntry,
    *,
    as_of: date,
    daily_rate: Decimal,
    actor_id: int | None,
) -> LateInterestOutcome:
    if entry.status not in (EntryStatus.PENDING, EntryStatus.PARTIALLY_PAID):
        raise LedgerValidationError(
            f"Entry {entry.id} is {entry.status.value}; late interest applies to open entries only",
            code="NOT_OVERDUE",
            entry_id=entry.id,
            status=entry.status,
        )
    position = overdue_position(entry, as_of, daily_rate)
    if position.interest <= 0:
        raise LedgerValidationError(
            f"Entry {entry.id} has no uncharged overdue days on {as_of}",
            code="NOT_OVERDUE",
            entry_id=entry.id,
            due_date=entry.due_date,
            late_interest_through=entry.late_interest_through,
        )

    debtor = sorted(entry.debit_lines, key=lambda ln: ln.line_number)[0]
    receivable_id = await chart.resolve_account_id(db, chart.RECEIVABLE_RENT)
    lines = [{
        "account_id": receivable_id,
        "debit": position.interest,
        "counterparty_id": debtor.counterparty_id,
        "description": f"Late interest on entry {entry.id}, {position.days_charged} days",
    }]
    lines.extend(_split_credits(entry, position.interest))

    charged_from = entry.late_interest_through or entry.due_date
    entry.late_interest_through = as_of
    charge = await create_entry(
        db,
        lines=lines,
        accrual_date=as_of,
        due_date=as_of + timedelta(days=10),
        category=LATE_INTEREST_CATEGORY,
        description=f"Late interest on {entry.category.lower()} entry {entry.id}",
        contract_id=entry.contract_id,
        metadata={
            "source_entry_id": entry.id,
            "days_overdue": position.days_overdue,
            "days_charged": position.days_charged,
            "charged_from": charged_from.isoformat(),
            "daily_rate": str(daily_rate),
            "outstanding": str(position.outstanding),
        },
        created_by=actor_id,
    )
    return LateInterestOutcome(
        entry_id=entry.id, interest_entry_id=charge.id, amount=position.interest
    )


async def apply_late_interest(
    db: AsyncSession,
    entry_ids: list[int],
    *,
    as_of: date | None = None,
    daily_rate: Decimal | None = None,
    actor_id: int | None = None,
) -> LateInterestRun:
    """Create a late-interest entry for each overdue entry in *entry_ids*.

    Each source entry is stamped with ``late_interest_through = as_of`` in
    the same unit of work as its charge, so a later run only bills the days
    after that.
    """
    if not entry_ids:
        raise LedgerValidationError("No entries selected", code="EMPTY_LINES")
    as_of = as_of or date.today()
    rate = daily_rate if daily_rate is not None else settings.late_interest_daily_rate
    if rate <= 0:
        raise LedgerValidationError(
            f"Daily rate must be positive, got {rate}", code="INVALID_AMOUNT", daily_rate=rate
        )

    async def _charge(entry: LedgerEntry) -> LateInterestOutcome:
        return await _charge_entry(db, entry, as_of=as_of, daily_rate=rate, actor_id=actor_id)

    run = LateInterestRun(as_of=as_of, daily_rate=rate)
    for entry_id in entry_ids:
        try:
            outcome = await run_entry_operation(db, entry_id, _charge, name="late interest")
        except LedgerError as exc:
            logger.warning("Late interest on entry %s rejected: %s %s", entry_id, exc.code, exc.message)
            outcome = LateInterestOutcome(
                entry_id=entry_id, error_code=exc.code, error_message=exc.message
            )
        run.outcomes.append(outcome)

    logger.info(
        "Late interest run as of %s: %d charged, total %s",
        as_of, sum(1 for o in run.outcomes if o.ok), run.total_interest,
    )
    return run
