"""Debt forgiveness ("condonación") and entry cancellation."""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ledger import (
    AuditAction,
    EntryStatus,
    ForgivenessReason,
    LedgerEntry,
    VoidReason,
    _amount,
)
from app.services.ledger.concurrency import run_entry_operation
from app.services.ledger.entries import ensure_transition
from app.services.ledger.errors import LedgerValidationError, StateConflictError
from app.services.ledger.payments import apply_waterfall, check_amount, ensure_payable
from app.services.ledger.store import append_audit_event, utcnow

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10


def _check_reason(reason: str, entry_id: int) -> str:
    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise LedgerValidationError(
            f"A reason of at least {MIN_REASON_LENGTH} characters is required",
            code="INVALID_REASON",
            entry_id=entry_id,
        )
    return reason


async def forgive_debt(
    db: AsyncSession,
    entry_id: int,
    *,
    reason: str,
    authorizer_id: int,
    amount: Decimal | None = None,
    reason_code: ForgivenessReason = ForgivenessReason.OTHER,
    actor_id: int | None = None,
) -> LedgerEntry:
    """Write off all or part of what the debtor still owes.

    The amount goes to ``forgiven_to_date``, not ``paid_to_date``: nothing
    was collected, so creditors' entitlements do not grow and no cash moves.
    """
    reason = _check_reason(reason, entry_id)

    async def _forgive(entry: LedgerEntry) -> LedgerEntry:
        ensure_payable(entry)
        forgiven = check_amount(entry, amount if amount is not None else entry.outstanding)

        previous_status = entry.status
        allocations = apply_waterfall(entry, forgiven, field="forgiven_to_date")

        target = EntryStatus.FORGIVEN if entry.outstanding == 0 else EntryStatus.PARTIALLY_PAID
        ensure_transition(entry, target)
        entry.status = target
        entry.forgiven_amount = _amount(entry.forgiven_amount) + forgiven
        entry.forgiven_at = utcnow()

        append_audit_event(
            db,
            entry,
            action=AuditAction.FORGIVENESS,
            previous_status=previous_status,
            actor_id=actor_id,
            amount=forgiven,
            note=f"Forgiven ({reason_code.value}), authorized by user {authorizer_id}: {reason}",
            details={
                "authorizer_id": authorizer_id,
                "reason_code": reason_code.value,
                "allocations": [
                    {"line_number": n, "amount": str(a)} for n, a in allocations
                ],
            },
        )
        logger.info(
            "Forgave %s on entry %s (%s -> %s), authorized by %s",
            forgiven, entry.id, previous_status.value, target.value, authorizer_id,
        )
        return entry

    return await run_entry_operation(db, entry_id, _forgive, name="forgiveness")


def _ensure_voidable(entry: LedgerEntry) -> None:
    if entry.status in (EntryStatus.PAID, EntryStatus.SETTLED):
        code = "ALREADY_PAID"
    elif entry.status == EntryStatus.VOIDED:
        code = "ALREADY_VOIDED"
    else:
        ensure_transition(entry, EntryStatus.VOIDED, code="TERMINAL_STATE")
        return
    raise StateConflictError(
        f"Entry {entry.id} is {entry.status.value} and cannot be voided",
        code=code,
        entry_id=entry.id,
        status=entry.status,
    )


async def void_entry(
    db: AsyncSession,
    entry_id: int,
    *,
    reason: str,
    reason_code: VoidReason = VoidReason.OTHER,
    actor_id: int | None = None,
) -> LedgerEntry:
    """Cancel an entry that was issued in error or whose contract ended."""
    reason = _check_reason(reason, entry_id)

    async def _void(entry: LedgerEntry) -> LedgerEntry:
        _ensure_voidable(entry)
        previous_status = entry.status
        entry.status = EntryStatus.VOIDED
        entry.void_reason = reason
        entry.void_reason_code = reason_code
        entry.voided_at = utcnow()

        append_audit_event(
            db,
            entry,
            action=AuditAction.VOID,
            previous_status=previous_status,
            actor_id=actor_id,
            note=f"Voided ({reason_code.value}): {reason}",
            details={"reason_code": reason_code.value, "collected": str(entry.collected)},
        )
        logger.info("Voided entry %s (was %s)", entry.id, previous_status.value)
        return entry

    return await run_entry_operation(db, entry_id, _void, name="void")
