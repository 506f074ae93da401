"""Chart of Accounts lookup used by the ledger.

Resolves stable account codes to ids.  Results are cached per process; the
chart is reference data and changes only through administration outside
this service, after which :func:`clear_cache` must be called.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.chart import ChartAccount
from app.services.ledger.errors import LedgerValidationError

logger = logging.getLogger(__name__)

RECEIVABLE_RENT = "RECEIVABLE_RENT"
PAYABLE_LANDLORD = "PAYABLE_LANDLORD"
INCOME_FEES = "INCOME_FEES"
INCOME_INITIAL_FEES = "INCOME_INITIAL_FEES"
TRUST_CASH = "TRUST_CASH"
DEPOSIT_LIABILITY = "DEPOSIT_LIABILITY"

_cache: dict[str, int] = {}


async def resolve_account_ids(db: AsyncSession, codes: list[str]) -> dict[str, int]:
    """Map each code to its account id; unknown codes raise ``UNKNOWN_ACCOUNT``."""
    missing = [c for c in codes if c not in _cache]
    if missing:
        result = await db.execute(
            select(ChartAccount.code, ChartAccount.id).where(
                ChartAccount.code.in_(missing), ChartAccount.is_active.is_(True)
            )
        )
        for code, account_id in result.all():
            _cache[code] = account_id

    unknown = [c for c in codes if c not in _cache]
    if unknown:
        raise LedgerValidationError(
            f"Chart of accounts has no active account for code(s): {', '.join(unknown)}",
            code="UNKNOWN_ACCOUNT",
            codes=unknown,
        )
    return {c: _cache[c] for c in codes}


async def resolve_account_id(db: AsyncSession, code: str) -> int:
    return (await resolve_account_ids(db, [code]))[code]


async def validate_account_ids(db: AsyncSession, account_ids: list[int]) -> None:
    """Check that every referenced account exists and is active."""
    wanted = set(account_ids)
    result = await db.execute(
        select(ChartAccount.id).where(
            ChartAccount.id.in_(wanted), ChartAccount.is_active.is_(True)
        )
    )
    found = set(result.scalars().all())
    unknown = sorted(wanted - found)
    if unknown:
        raise LedgerValidationError(
            f"Chart account(s) {unknown} not found or inactive",
            code="UNKNOWN_ACCOUNT",
            account_ids=unknown,
        )


def clear_cache() -> None:
    _cache.clear()
