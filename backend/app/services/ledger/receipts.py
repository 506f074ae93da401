"""Receipt orchestration.

A receipt is one trip to the cash desk: several collections (COBRO) and
payouts (PAGO) against different entries, all through one cash account on
one date.  Lines are processed independently; each runs in its own
savepoint, so a rejected line rolls back alone and the rest of the receipt
still goes through.  Totals count only the lines that were processed.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select, func as sa_func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.cash_account import CashAccountStatus, CashDirection
from app.models.ledger import ZERO
from app.models.receipt import Receipt, ReceiptLine, ReceiptLineStatus, ReceiptOperation
from app.services import cash_accounts
from app.services.ledger.errors import LedgerError, LedgerValidationError
from app.services.ledger.payments import register_payment
from app.services.ledger.settlement import settle_creditor
from app.services.ledger.store import to_money

logger = logging.getLogger(__name__)


@dataclass
class ReceiptItem:
    entry_id: int
    operation: ReceiptOperation
    amount: Decimal | None = None
    counterparty_id: int | None = None
    concept: str | None = None


@dataclass
class ReceiptResult:
    receipt: Receipt
    lines: list[ReceiptLine]

    @property
    def processed(self) -> list[ReceiptLine]:
        return [ln for ln in self.lines if ln.status == ReceiptLineStatus.PROCESSED]

    @property
    def failed(self) -> list[ReceiptLine]:
        return [ln for ln in self.lines if ln.status == ReceiptLineStatus.ERROR]


async def _next_receipt_number(db: AsyncSession, receipt_date: date) -> str:
    """Generate the next sequential receipt number: RC-YYYY-NNNNNN."""
    prefix = f"RC-{receipt_date.year}-"
    result = await db.execute(
        select(sa_func.max(Receipt.receipt_number))
        .where(Receipt.receipt_number.like(f"{prefix}%"))
    )
    last = result.scalar_one_or_none()
    seq = int(last.replace(prefix, "")) + 1 if last else 1
    return f"{prefix}{seq:06d}"


def _validate_items(items: list[ReceiptItem]) -> None:
    if not items:
        raise LedgerValidationError("A receipt needs at least one line", code="EMPTY_LINES")
    for idx, item in enumerate(items, start=1):
        if item.operation == ReceiptOperation.COBRO and item.amount is None:
            raise LedgerValidationError(
                f"Receipt line {idx} is a collection without an amount",
                code="INVALID_LINE",
                line=idx,
                entry_id=item.entry_id,
            )
        if item.operation == ReceiptOperation.PAGO and item.counterparty_id is None:
            raise LedgerValidationError(
                f"Receipt line {idx} is a payout without a counterparty",
                code="INVALID_LINE",
                line=idx,
            )


async def _process_item(
    db: AsyncSession,
    item: ReceiptItem,
    *,
    account_id: int,
    receipt_date: date,
    method: str,
    voucher: str | None,
    actor_id: int | None,
) -> Decimal:
    """Run one line; returns the cash amount it moved."""
    if item.operation == ReceiptOperation.COBRO:
        amount = to_money(item.amount)
        await register_payment(
            db,
            item.entry_id,
            amount=amount,
            payment_date=receipt_date,
            method=method,
            voucher=voucher,
            account_id=account_id,
            actor_id=actor_id,
        )
        return amount

    result = await settle_creditor(
        db,
        item.entry_id,
        counterparty_id=item.counterparty_id,
        method=method,
        settlement_date=receipt_date,
        voucher=voucher,
        account_id=account_id,
        actor_id=actor_id,
    )
    return result.payout


async def process_receipt(
    db: AsyncSession,
    items: list[ReceiptItem],
    *,
    account_id: int,
    receipt_date: date | None = None,
    method: str,
    voucher: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> ReceiptResult:
    """Process a batch of collections and payouts as one receipt.

    Best effort: a ``LedgerError`` on one line is recorded on that line and
    does not stop the others.  Anything else propagates.
    """
    _validate_items(items)
    receipt_date = receipt_date or date.today()

    account = await cash_accounts.get_account(db, account_id)
    if account is None or account.status != CashAccountStatus.ACTIVE:
        raise LedgerValidationError(
            f"Cash account {account_id} not found or not active",
            code="UNKNOWN_CASH_ACCOUNT",
            account_id=account_id,
        )

    gross_inflow = ZERO
    gross_outflow = ZERO
    receipt_lines: list[ReceiptLine] = []

    for idx, item in enumerate(items, start=1):
        line = ReceiptLine(
            line_number=idx,
            entry_id=item.entry_id,
            operation=item.operation,
            counterparty_id=item.counterparty_id,
            requested_amount=to_money(item.amount) if item.amount is not None else None,
            applied_amount=ZERO,
            concept=item.concept,
        )
        try:
            moved = await _process_item(
                db,
                item,
                account_id=account_id,
                receipt_date=receipt_date,
                method=method,
                voucher=voucher,
                actor_id=actor_id,
            )
        except LedgerError as exc:
            line.status = ReceiptLineStatus.ERROR
            line.error_code = exc.code
            line.error_message = exc.message
            logger.warning(
                "Receipt line %d (%s on entry %s) rejected: %s %s",
                idx, item.operation.value, item.entry_id, exc.code, exc.message,
            )
        else:
            line.status = ReceiptLineStatus.PROCESSED
            line.applied_amount = moved
            if item.operation == ReceiptOperation.COBRO:
                gross_inflow += moved
            else:
                gross_outflow += moved
        receipt_lines.append(line)

    net = gross_inflow - gross_outflow
    receipt = Receipt(
        receipt_number=await _next_receipt_number(db, receipt_date),
        receipt_date=receipt_date,
        method=method,
        voucher=voucher,
        account_id=account_id,
        gross_inflow=gross_inflow,
        gross_outflow=gross_outflow,
        net_amount=abs(net),
        net_direction=CashDirection.INFLOW if net >= 0 else CashDirection.OUTFLOW,
        notes=notes,
        created_by=actor_id,
        created_at=datetime.now(timezone.utc),
        lines=receipt_lines,
    )
    db.add(receipt)
    await db.flush()

    result = ReceiptResult(receipt=receipt, lines=receipt_lines)
    logger.info(
        "Receipt %s: %d processed, %d failed, in=%s out=%s",
        receipt.receipt_number, len(result.processed), len(result.failed),
        gross_inflow, gross_outflow,
    )
    return result
