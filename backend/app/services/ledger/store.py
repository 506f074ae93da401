"""Entry store helpers shared by every ledger operation.

Loading, audit-event appends, money rounding, and the cash-account bridge.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.cash_account import CashDirection
from app.models.ledger import (
    AuditAction,
    EntryStatus,
    LedgerAuditEvent,
    LedgerEntry,
)
from app.services import cash_accounts
from app.services.ledger.errors import DependencyFailureError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce *value* to a two-decimal ``Decimal`` (half-up)."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def floor_money(value: Decimal) -> Decimal:
    """Round down to the cent; used where rounding up could overpay."""
    return value.quantize(CENT, rounding=ROUND_DOWN)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_entry(
    db: AsyncSession, entry_id: int, *, refresh: bool = False
) -> LedgerEntry | None:
    """Load an entry with its lines.

    ``refresh`` overwrites any copy already in the session identity map, so a
    retried operation sees the row version another writer committed.
    """
    stmt = (
        select(LedgerEntry)
        .where(LedgerEntry.id == entry_id)
        .options(selectinload(LedgerEntry.lines))
    )
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def append_audit_event(
    db: AsyncSession,
    entry: LedgerEntry,
    *,
    action: AuditAction,
    previous_status: EntryStatus | None,
    actor_id: int | None,
    amount: Decimal | None = None,
    note: str | None = None,
    details: dict | None = None,
) -> LedgerAuditEvent:
    event = LedgerAuditEvent(
        entry_id=entry.id,
        action=action,
        actor_id=actor_id,
        previous_status=previous_status,
        new_status=entry.status,
        amount=amount,
        note=note,
        details=details,
        created_at=utcnow(),
    )
    db.add(event)
    return event


async def move_cash(
    db: AsyncSession,
    account_id: int,
    amount: Decimal,
    direction: CashDirection,
    *,
    entry: LedgerEntry,
    description: str,
    actor_id: int | None,
) -> None:
    """Record the cash side of an entry operation in the same transaction."""
    try:
        await cash_accounts.update_balance(
            db,
            account_id,
            amount,
            direction,
            entry_id=entry.id,
            description=description,
            actor_id=actor_id,
        )
    except cash_accounts.CashAccountError as exc:
        logger.error(
            "Cash %s of %s on account %s failed for entry %s: %s",
            direction.value, amount, account_id, entry.id, exc,
        )
        raise DependencyFailureError(
            f"Cash account update failed: {exc}",
            code="CASH_ACCOUNT_FAILURE",
            entry_id=entry.id,
            account_id=account_id,
            amount=amount,
            direction=direction,
        ) from exc
