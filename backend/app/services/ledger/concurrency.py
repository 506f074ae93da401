"""Per-entry unit of work with optimistic locking.

Every mutating ledger operation is a read-modify-write of one entry.  The
entry's ``version`` column is the mapper's ``version_id_col``: the UPDATE only
matches the version that was read, so a concurrent writer makes the flush
raise ``StaleDataError``.  Each attempt runs inside a SAVEPOINT, so the entry
write, its audit event and any cash-account movement roll back together
before the operation is retried against a freshly loaded entry.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.models.ledger import LedgerEntry
from app.services.ledger.errors import EntryNotFoundError, StateConflictError
from app.services.ledger.store import get_entry, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_entry_operation(
    db: AsyncSession,
    entry_id: int,
    operation: Callable[[LedgerEntry], Awaitable[T]],
    *,
    name: str,
    max_attempts: int | None = None,
) -> T:
    """Load entry *entry_id*, apply *operation* and flush, retrying on version conflicts."""
    attempts = max_attempts or settings.ledger_max_retries
    for attempt in range(1, attempts + 1):
        try:
            async with db.begin_nested():
                entry = await get_entry(db, entry_id, refresh=True)
                if entry is None:
                    raise EntryNotFoundError(entry_id)
                result = await operation(entry)
                # Always emit an UPDATE of the entry row so the version check runs
                entry.updated_at = utcnow()
                await db.flush()
            return result
        except StaleDataError:
            logger.warning(
                "Concurrent update on entry %s during %s (attempt %d/%d)",
                entry_id, name, attempt, attempts,
            )

    raise StateConflictError(
        f"Entry {entry_id} kept changing underneath {name}; gave up after {attempts} attempts",
        code="CONCURRENT_UPDATE",
        entry_id=entry_id,
        attempts=attempts,
    )
