"""Seed data for the rent ledger.

Creates (all idempotent):
- The chart accounts the entry factory books to
- A default trust cash account for receipts
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.cash_account import CashAccount, CashAccountStatus, CashAccountType
from app.models.chart import ChartAccount, ChartAccountCategory
from app.services.ledger import chart

logger = logging.getLogger(__name__)


CHART_ACCOUNTS = [
    (chart.RECEIVABLE_RENT, "Rent receivable from tenants", ChartAccountCategory.ASSET),
    (chart.TRUST_CASH, "Trust cash and bank", ChartAccountCategory.ASSET),
    (chart.PAYABLE_LANDLORD, "Payable to landlords", ChartAccountCategory.LIABILITY),
    (chart.DEPOSIT_LIABILITY, "Security deposits held", ChartAccountCategory.LIABILITY),
    (chart.INCOME_FEES, "Management fee income", ChartAccountCategory.REVENUE),
    (chart.INCOME_INITIAL_FEES, "Contract fee income", ChartAccountCategory.REVENUE),
]

DEFAULT_CASH_ACCOUNT = "Trust account"


async def _get_or_create_chart_account(
    db: AsyncSession, code: str, name: str, category: ChartAccountCategory
) -> ChartAccount:
    result = await db.execute(select(ChartAccount).where(ChartAccount.code == code))
    acct = result.scalar_one_or_none()
    if acct:
        return acct
    acct = ChartAccount(code=code, name=name, category=category, is_active=True)
    db.add(acct)
    await db.flush()
    return acct


async def seed_ledger_data(db: AsyncSession) -> None:
    """Seed the chart of accounts and the default cash account."""
    try:
        for code, name, category in CHART_ACCOUNTS:
            await _get_or_create_chart_account(db, code, name, category)

        result = await db.execute(
            select(CashAccount).where(CashAccount.name == DEFAULT_CASH_ACCOUNT)
        )
        if result.scalar_one_or_none() is None:
            db.add(CashAccount(
                name=DEFAULT_CASH_ACCOUNT,
                account_type=CashAccountType.CHECKING,
                currency_code=settings.currency_code,
                status=CashAccountStatus.ACTIVE,
            ))
        await db.commit()
        chart.clear_cache()
        logger.info("Ledger seed data ready (%d chart accounts)", len(CHART_ACCOUNTS))
    except Exception as e:
        logger.warning("Ledger seed skipped: %s", e)
        await db.rollback()
