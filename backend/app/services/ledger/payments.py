"""Payment registration.

Applies debtor cash to an entry's debit lines and moves the entry to
PARTIALLY_PAID or PAID.  Credit lines are never touched here; creditors are
paid out later by :mod:`app.services.ledger.settlement` from what was
actually collected.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.cash_account import CashDirection
from app.models.ledger import AuditAction, EntryStatus, LedgerEntry, _amount
from app.services.ledger.concurrency import run_entry_operation
from app.services.ledger.entries import ensure_transition
from app.services.ledger.errors import LedgerValidationError, StateConflictError
from app.services.ledger.store import append_audit_event, move_cash, to_money

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = frozenset({EntryStatus.PENDING, EntryStatus.PARTIALLY_PAID})


def ensure_payable(entry: LedgerEntry) -> None:
    if entry.status not in PAYABLE_STATUSES:
        raise StateConflictError(
            f"Entry {entry.id} is {entry.status.value} and no longer accepts payments",
            code="TERMINAL_STATE",
            entry_id=entry.id,
            status=entry.status,
        )


def check_amount(entry: LedgerEntry, amount: Decimal) -> Decimal:
    """Validate *amount* against the entry's outstanding balance."""
    amount = to_money(amount)
    if amount <= 0:
        raise LedgerValidationError(
            f"Amount must be positive, got {amount}",
            code="INVALID_AMOUNT",
            entry_id=entry.id,
            amount=amount,
        )
    outstanding = entry.outstanding
    if amount > outstanding:
        raise LedgerValidationError(
            f"Amount {amount} exceeds the outstanding balance {outstanding}",
            code="AMOUNT_EXCEEDS_BALANCE",
            entry_id=entry.id,
            amount=amount,
            outstanding=outstanding,
        )
    return amount


def apply_waterfall(
    entry: LedgerEntry, amount: Decimal, *, field: str = "paid_to_date"
) -> list[tuple[int, Decimal]]:
    """Spread *amount* over the debit lines in line order.

    Each line absorbs at most what it still owes (``debit - paid - forgiven``)
    before the rest flows to the next one.  *field* selects which accumulator
    receives the allocation.  Returns ``(line_number, allocated)`` pairs.
    """
    remaining = amount
    allocations: list[tuple[int, Decimal]] = []
    for ln in sorted(entry.debit_lines, key=lambda l: l.line_number):
        if remaining <= 0:
            break
        take = min(remaining, ln.shortfall)
        if take <= 0:
            continue
        setattr(ln, field, _amount(getattr(ln, field)) + take)
        remaining -= take
        allocations.append((ln.line_number, take))
    return allocations


async def register_payment(
    db: AsyncSession,
    entry_id: int,
    *,
    amount: Decimal,
    method: str,
    payment_date: date | None = None,
    voucher: str | None = None,
    account_id: int | None = None,
    actor_id: int | None = None,
) -> LedgerEntry:
    """Record a (possibly partial) debtor payment against *entry_id*."""
    payment_date = payment_date or date.today()

    async def _pay(entry: LedgerEntry) -> LedgerEntry:
        ensure_payable(entry)
        paid = check_amount(entry, amount)

        previous_status = entry.status
        allocations = apply_waterfall(entry, paid)

        if entry.outstanding == 0:
            target = EntryStatus.PAID
        else:
            target = EntryStatus.PARTIALLY_PAID
        ensure_transition(entry, target)
        entry.status = target
        if target == EntryStatus.PAID:
            entry.payment_date = payment_date
            entry.payment_method = method
            entry.payment_voucher = voucher

        if account_id is not None:
            await move_cash(
                db,
                account_id,
                paid,
                CashDirection.INFLOW,
                entry=entry,
                description=f"Payment on entry {entry.id}: {entry.description}",
                actor_id=actor_id,
            )

        append_audit_event(
            db,
            entry,
            action=AuditAction.PAYMENT,
            previous_status=previous_status,
            actor_id=actor_id,
            amount=paid,
            note=f"Payment via {method}" + (f" ({voucher})" if voucher else ""),
            details={
                "payment_date": payment_date.isoformat(),
                "account_id": account_id,
                "allocations": [
                    {"line_number": n, "amount": str(a)} for n, a in allocations
                ],
            },
        )
        logger.info(
            "Payment of %s on entry %s (%s -> %s, outstanding=%s)",
            paid, entry.id, previous_status.value, target.value, entry.outstanding,
        )
        return entry

    return await run_entry_operation(db, entry_id, _pay, name="payment")
