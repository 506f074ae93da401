"""Tests for the optimistic-locking unit of work."""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from sqlalchemy.orm.exc import StaleDataError

from app.models.ledger import EntryStatus
from app.services.ledger.concurrency import run_entry_operation
from app.services.ledger.errors import EntryNotFoundError, StateConflictError
from app.services.ledger.payments import register_payment


class TestRunEntryOperation:

    @pytest.mark.asyncio
    async def test_runs_once_and_touches_entry(self, db, load_entry, rent_entry):
        loader = load_entry(rent_entry)
        operation = AsyncMock(return_value="done")

        result = await run_entry_operation(db, 1, operation, name="test")

        assert result == "done"
        operation.assert_awaited_once_with(rent_entry)
        loader.assert_awaited_once_with(db, 1, refresh=True)
        assert rent_entry.updated_at is not None
        db.begin_nested.assert_called_once()
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_after_stale_version(self, db, load_entry, rent_entry):
        loader = load_entry(rent_entry)
        db.flush.side_effect = [StaleDataError("version mismatch"), None]
        operation = AsyncMock(return_value="ok")

        assert await run_entry_operation(db, 1, operation, name="test") == "ok"
        assert operation.await_count == 2
        assert loader.await_count == 2
        assert db.begin_nested.call_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, db, load_entry, rent_entry):
        load_entry(rent_entry)
        db.flush.side_effect = StaleDataError("version mismatch")

        with pytest.raises(StateConflictError) as exc:
            await run_entry_operation(db, 1, AsyncMock(), name="payment", max_attempts=3)

        assert exc.value.code == "CONCURRENT_UPDATE"
        assert exc.value.context["attempts"] == 3
        assert db.flush.await_count == 3

    @pytest.mark.asyncio
    async def test_missing_entry_is_not_retried(self, db, load_entry):
        load_entry()
        operation = AsyncMock()
        with pytest.raises(EntryNotFoundError):
            await run_entry_operation(db, 5, operation, name="test")
        operation.assert_not_awaited()
        db.begin_nested.assert_called_once()

    @pytest.mark.asyncio
    async def test_payment_retried_against_fresh_entry(self, db, load_entry, make_entry, monkeypatch):
        """A competing writer paid 300 in between; the retry sees it."""
        stale = make_entry(debits=[(10, "1000")], credits=[(20, "1000")])
        fresh = make_entry(
            debits=[(10, "1000")], credits=[(20, "1000")], status=EntryStatus.PARTIALLY_PAID,
        )
        fresh.debit_lines[0].paid_to_date = Decimal("300")

        loader = AsyncMock(side_effect=[stale, fresh])
        monkeypatch.setattr("app.services.ledger.concurrency.get_entry", loader)
        db.flush.side_effect = [StaleDataError("version mismatch"), None]

        entry = await register_payment(db, 1, amount=Decimal("700"), method="cash")

        assert entry is fresh
        assert entry.status == EntryStatus.PAID
        assert entry.collected == Decimal("1000.00")
