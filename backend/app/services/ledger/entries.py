"""Ledger entry lifecycle.

Creation enforces the two structural invariants of an entry:

1. it has at least one line
2. total debits == total credits

The status column only moves along the edges in :data:`TRANSITIONS`; every
operation checks its target status with :func:`ensure_transition` before it
touches the entry.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select, func as sa_func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.ledger import (
    AuditAction,
    EntryStatus,
    LedgerAuditEvent,
    LedgerEntry,
    LedgerLine,
)
from app.services.ledger import chart
from app.services.ledger.concurrency import run_entry_operation
from app.services.ledger.errors import (
    EntryNotFoundError,
    LedgerValidationError,
    StateConflictError,
)
from app.services.ledger.store import (
    append_audit_event,
    get_entry,
    to_money,
    utcnow,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

TRANSITIONS: dict[EntryStatus, frozenset[EntryStatus]] = {
    EntryStatus.PENDING: frozenset({
        EntryStatus.PARTIALLY_PAID,
        EntryStatus.PAID,
        EntryStatus.VOIDED,
        EntryStatus.FORGIVEN,
    }),
    EntryStatus.PARTIALLY_PAID: frozenset({
        EntryStatus.PARTIALLY_PAID,
        EntryStatus.PAID,
        EntryStatus.VOIDED,
        EntryStatus.FORGIVEN,
    }),
    EntryStatus.PAID: frozenset({EntryStatus.SETTLED}),
    EntryStatus.PENDING_ADJUSTMENT: frozenset({EntryStatus.PENDING, EntryStatus.VOIDED}),
    EntryStatus.PENDING_INVOICE: frozenset({EntryStatus.INVOICED}),
    EntryStatus.VOIDED: frozenset(),
    EntryStatus.FORGIVEN: frozenset(),
    EntryStatus.SETTLED: frozenset(),
    EntryStatus.INVOICED: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    EntryStatus.VOIDED,
    EntryStatus.FORGIVEN,
    EntryStatus.SETTLED,
    EntryStatus.INVOICED,
})


def can_transition(source: EntryStatus, target: EntryStatus) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


def ensure_transition(entry: LedgerEntry, target: EntryStatus, *, code: str = "INVALID_STATE") -> None:
    if not can_transition(entry.status, target):
        raise StateConflictError(
            f"Entry {entry.id} cannot move from {entry.status.value} to {target.value}",
            code=code,
            entry_id=entry.id,
            status=entry.status,
            target=target,
        )


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _validate_lines(lines: list[dict[str, Any]]) -> tuple[Decimal, Decimal]:
    """Ensure the lines form a valid double entry.  Returns (total_dr, total_cr)."""
    if not lines:
        raise LedgerValidationError(
            "A ledger entry cannot be created without lines", code="EMPTY_LINES"
        )

    for idx, ln in enumerate(lines, start=1):
        dr = to_money(ln.get("debit", 0))
        cr = to_money(ln.get("credit", 0))
        if dr < 0 or cr < 0:
            raise LedgerValidationError(
                f"Line {idx} has a negative amount (debit={dr}, credit={cr})",
                code="INVALID_LINE",
                line=idx,
            )
        if dr > 0 and cr > 0:
            raise LedgerValidationError(
                f"Line {idx} carries both a debit and a credit",
                code="INVALID_LINE",
                line=idx,
            )
        if ln.get("account_id") is None:
            raise LedgerValidationError(
                f"Line {idx} has no account", code="INVALID_LINE", line=idx
            )

    total_dr = sum((to_money(ln.get("debit", 0)) for ln in lines), Decimal("0.00"))
    total_cr = sum((to_money(ln.get("credit", 0)) for ln in lines), Decimal("0.00"))
    if total_dr != total_cr:
        raise LedgerValidationError(
            f"Entry is not balanced: debits={total_dr}, credits={total_cr}",
            code="UNBALANCED",
            total_debit=total_dr,
            total_credit=total_cr,
        )
    if total_dr == 0:
        raise LedgerValidationError(
            "Entry has zero total; at least one non-zero line required",
            code="INVALID_LINE",
        )
    return total_dr, total_cr


def _build_line(idx: int, ln: dict[str, Any]) -> LedgerLine:
    return LedgerLine(
        line_number=idx,
        account_id=ln["account_id"],
        description=ln.get("description") or "",
        debit=to_money(ln.get("debit", 0)),
        credit=to_money(ln.get("credit", 0)),
        counterparty_id=ln.get("counterparty_id"),
        paid_to_date=Decimal("0.00"),
        forgiven_to_date=Decimal("0.00"),
        settled_to_date=Decimal("0.00"),
        tax_included=bool(ln.get("tax_included", False)),
        tax_rate=ln.get("tax_rate"),
        taxable_base=ln.get("taxable_base"),
        tax_amount=ln.get("tax_amount"),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def create_entry(
    db: AsyncSession,
    *,
    lines: list[dict[str, Any]],
    accrual_date: date,
    due_date: date,
    category: str,
    description: str,
    contract_id: int | None = None,
    awaiting_adjustment: bool = False,
    awaiting_invoice: bool = False,
    adjustment_rule: str | None = None,
    metadata: dict | None = None,
    created_by: int | None = None,
) -> LedgerEntry:
    """Validate and persist a new entry in PENDING (or one of the held states).

    Parameters
    ----------
    lines : list of dicts
        Each dict must have ``account_id`` and one of ``debit``/``credit``,
        and optionally ``description``, ``counterparty_id`` and the tax
        fields ``tax_included``, ``tax_rate``, ``taxable_base``, ``tax_amount``.
    awaiting_adjustment : bool
        The entry is index-linked and its amount is not final yet.
    awaiting_invoice : bool
        The entry is held in PENDING_INVOICE until a fiscal document is
        issued for it (:func:`mark_invoiced`).
    """
    total_dr, _ = _validate_lines(lines)
    await chart.validate_account_ids(db, [ln["account_id"] for ln in lines])

    if due_date < accrual_date:
        raise LedgerValidationError(
            f"Due date {due_date} precedes accrual date {accrual_date}",
            code="INVALID_DATES",
        )

    if awaiting_adjustment and awaiting_invoice:
        raise LedgerValidationError(
            "An entry cannot await both an index adjustment and an invoice",
            code="INVALID_STATE",
        )
    if awaiting_adjustment:
        status = EntryStatus.PENDING_ADJUSTMENT
    elif awaiting_invoice:
        status = EntryStatus.PENDING_INVOICE
    else:
        status = EntryStatus.PENDING
    now = utcnow()
    entry = LedgerEntry(
        contract_id=contract_id,
        accrual_date=accrual_date,
        due_date=due_date,
        category=category,
        description=description,
        original_amount=total_dr,
        current_amount=total_dr,
        status=status,
        is_adjustable=awaiting_adjustment,
        adjustment_rule=adjustment_rule,
        metadata_=metadata,
        created_by=created_by,
        created_at=now,
        lines=[_build_line(idx, ln) for idx, ln in enumerate(lines, start=1)],
        audit_events=[
            LedgerAuditEvent(
                action=AuditAction.CREATED,
                actor_id=created_by,
                previous_status=None,
                new_status=status,
                amount=total_dr,
                note=f"{category}: {description}",
                created_at=now,
            )
        ],
    )
    db.add(entry)
    await db.flush()
    logger.info(
        "Created ledger entry %s (%s, amount=%s, status=%s)",
        entry.id, category, total_dr, status.value,
    )
    return entry


async def require_entry(db: AsyncSession, entry_id: int) -> LedgerEntry:
    entry = await get_entry(db, entry_id)
    if entry is None:
        raise EntryNotFoundError(entry_id)
    return entry


async def list_entries(
    db: AsyncSession,
    *,
    contract_id: int | None = None,
    counterparty_id: int | None = None,
    category: str | None = None,
    status: EntryStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    pending_only: bool = False,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[LedgerEntry], int]:
    """Filtered, paginated entry search.  Returns (items, total)."""
    q = select(LedgerEntry)
    if contract_id is not None:
        q = q.where(LedgerEntry.contract_id == contract_id)
    if counterparty_id is not None:
        q = q.where(
            LedgerEntry.id.in_(
                select(LedgerLine.entry_id).where(LedgerLine.counterparty_id == counterparty_id)
            )
        )
    if category:
        q = q.where(LedgerEntry.category == category)
    if status is not None:
        q = q.where(LedgerEntry.status == status)
    if pending_only:
        q = q.where(LedgerEntry.status.in_([EntryStatus.PENDING, EntryStatus.PARTIALLY_PAID]))
    if date_from:
        q = q.where(LedgerEntry.accrual_date >= date_from)
    if date_to:
        q = q.where(LedgerEntry.accrual_date <= date_to)

    total = (await db.execute(select(sa_func.count()).select_from(q.subquery()))).scalar_one()

    result = await db.execute(
        q.options(selectinload(LedgerEntry.lines))
        .order_by(LedgerEntry.accrual_date.desc(), LedgerEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def get_entry_history(db: AsyncSession, entry_id: int) -> list[LedgerAuditEvent]:
    """Audit trail of an entry, oldest first."""
    await require_entry(db, entry_id)
    result = await db.execute(
        select(LedgerAuditEvent)
        .where(LedgerAuditEvent.entry_id == entry_id)
        .order_by(LedgerAuditEvent.id)
    )
    return list(result.scalars().all())


def _rescale_side(lines: list[LedgerLine], attr: str, ratio: Decimal, new_total: Decimal) -> None:
    """Scale one side's amounts by *ratio*; the last line absorbs rounding."""
    if not lines:
        return
    running = Decimal("0.00")
    for ln in lines[:-1]:
        scaled = to_money(getattr(ln, attr) * ratio)
        setattr(ln, attr, scaled)
        running += scaled
    setattr(lines[-1], attr, new_total - running)


async def apply_index_adjustment(
    db: AsyncSession,
    entry_id: int,
    *,
    index_value: Decimal,
    base_index_value: Decimal,
    actor_id: int | None = None,
) -> LedgerEntry:
    """Fix the amount of an index-linked entry and release it to PENDING."""
    index_value = Decimal(str(index_value))
    base_index_value = Decimal(str(base_index_value))
    if index_value <= 0 or base_index_value <= 0:
        raise LedgerValidationError(
            "Index values must be positive",
            code="INVALID_INDEX",
            entry_id=entry_id,
            index_value=index_value,
            base_index_value=base_index_value,
        )

    async def _adjust(entry: LedgerEntry) -> LedgerEntry:
        ensure_transition(entry, EntryStatus.PENDING)
        previous_status = entry.status
        previous_amount = entry.current_amount
        factor = index_value / base_index_value
        new_amount = to_money(entry.original_amount * factor)
        ratio = new_amount / previous_amount

        ordered = sorted(entry.lines, key=lambda ln: ln.line_number)
        _rescale_side([ln for ln in ordered if ln.is_debit], "debit", ratio, new_amount)
        _rescale_side([ln for ln in ordered if ln.is_credit], "credit", ratio, new_amount)

        entry.current_amount = new_amount
        entry.status = EntryStatus.PENDING
        append_audit_event(
            db,
            entry,
            action=AuditAction.INDEX_ADJUSTMENT,
            previous_status=previous_status,
            actor_id=actor_id,
            amount=new_amount,
            note=f"Index {index_value} over base {base_index_value}",
            details={
                "index_value": str(index_value),
                "base_index_value": str(base_index_value),
                "previous_amount": str(previous_amount),
            },
        )
        logger.info(
            "Adjusted entry %s by index: %s -> %s", entry.id, previous_amount, new_amount
        )
        return entry

    return await run_entry_operation(db, entry_id, _adjust, name="index adjustment")


async def mark_invoiced(
    db: AsyncSession,
    entry_id: int,
    *,
    invoice_reference: str | None = None,
    actor_id: int | None = None,
) -> LedgerEntry:
    """Record that a fiscal document was issued for a PENDING_INVOICE entry."""

    async def _invoice(entry: LedgerEntry) -> LedgerEntry:
        ensure_transition(entry, EntryStatus.INVOICED)
        previous_status = entry.status
        entry.status = EntryStatus.INVOICED
        append_audit_event(
            db,
            entry,
            action=AuditAction.INVOICED,
            previous_status=previous_status,
            actor_id=actor_id,
            amount=entry.current_amount,
            note=f"Invoiced {invoice_reference}" if invoice_reference else "Invoiced",
            details={"invoice_reference": invoice_reference},
        )
        logger.info("Entry %s marked invoiced (%s)", entry.id, invoice_reference)
        return entry

    return await run_entry_operation(db, entry_id, _invoice, name="invoicing")
