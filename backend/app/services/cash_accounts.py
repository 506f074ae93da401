"""Cash / financial account service.

The ledger calls :func:`update_balance` for every real cash inflow (debtor
payment) and outflow (creditor payout).  Each call locks the account row
(``SELECT ... FOR UPDATE``), adjusts the running balance and appends a
:class:`CashMovement` row in the caller's transaction, so the balance change
commits or rolls back together with the entry write.
"""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.cash_account import (
    CashAccount,
    CashAccountStatus,
    CashAccountType,
    CashDirection,
    CashMovement,
)

logger = logging.getLogger(__name__)


class CashAccountError(Exception):
    """Cash account lookup or balance update failed."""


async def get_account(db: AsyncSession, account_id: int) -> CashAccount | None:
    result = await db.execute(select(CashAccount).where(CashAccount.id == account_id))
    return result.scalar_one_or_none()


async def _lock_account(db: AsyncSession, account_id: int) -> CashAccount | None:
    # Row lock serialises movements on one account; populate_existing
    # overwrites any copy already in the identity map
    result = await db.execute(
        select(CashAccount)
        .where(CashAccount.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_accounts(db: AsyncSession) -> list[CashAccount]:
    result = await db.execute(select(CashAccount).order_by(CashAccount.name))
    return list(result.scalars().all())


async def create_account(
    db: AsyncSession,
    *,
    name: str,
    account_type: CashAccountType,
    currency_code: str,
    opening_balance: Decimal = Decimal("0.00"),
) -> CashAccount:
    account = CashAccount(
        name=name,
        account_type=account_type,
        currency_code=currency_code,
        balance=opening_balance,
        status=CashAccountStatus.ACTIVE,
    )
    db.add(account)
    await db.flush()
    logger.info("Created cash account %s (%s)", account.id, name)
    return account


async def update_balance(
    db: AsyncSession,
    account_id: int,
    amount: Decimal,
    direction: CashDirection,
    *,
    entry_id: int | None = None,
    description: str | None = None,
    actor_id: int | None = None,
) -> CashAccount:
    """Apply an inflow or outflow to *account_id* and log the movement."""
    if amount <= 0:
        raise CashAccountError(f"Cash movement amount must be positive, got {amount}")

    account = await _lock_account(db, account_id)
    if account is None:
        raise CashAccountError(f"Cash account {account_id} not found")
    if account.status != CashAccountStatus.ACTIVE:
        raise CashAccountError(f"Cash account {account.name} is {account.status.value}")

    if direction == CashDirection.INFLOW:
        account.balance = (account.balance or Decimal("0.00")) + amount
    else:
        account.balance = (account.balance or Decimal("0.00")) - amount

    db.add(CashMovement(
        account_id=account.id,
        direction=direction,
        amount=amount,
        balance_after=account.balance,
        entry_id=entry_id,
        description=description,
        created_by=actor_id,
    ))
    await db.flush()
    logger.info(
        "Cash account %s %s %s (balance=%s, entry=%s)",
        account.id, direction.value, amount, account.balance, entry_id,
    )
    return account


async def list_movements(
    db: AsyncSession, account_id: int, *, limit: int = 100
) -> list[CashMovement]:
    result = await db.execute(
        select(CashMovement)
        .where(CashMovement.account_id == account_id)
        .order_by(CashMovement.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
