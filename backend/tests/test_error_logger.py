"""Tests for the centralised error logger."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.models.error_log import ErrorLog, ErrorSeverity
from app.services.error_logger import _sanitize_text, log_error
from app.services.ledger.errors import StateConflictError


class TestErrorLogger:

    def test_sanitize_strips_control_characters(self):
        assert _sanitize_text("bad\x00value\nkept") == "bad value\nkept"
        assert _sanitize_text("x" * 50, max_len=10) == "x" * 10

    @pytest.mark.asyncio
    async def test_ledger_error_keeps_code_and_entry(self, db):
        exc = StateConflictError("Entry 7 is voided", code="TERMINAL_STATE", entry_id=7)

        row = await log_error(exc, db=db, module="api.ledger", function_name="pay")

        assert isinstance(row, ErrorLog)
        assert row.error_code == "TERMINAL_STATE"
        assert row.error_kind == "state_conflict"
        assert row.entry_id == 7
        assert row.error_type == "StateConflictError"
        assert row.severity == ErrorSeverity.ERROR
        db.add.assert_called_once_with(row)

    @pytest.mark.asyncio
    async def test_plain_exception_has_no_code(self, db):
        row = await log_error(RuntimeError("boom"), db=db)
        assert row.error_code is None
        assert row.error_kind is None
        assert row.entry_id is None

    @pytest.mark.asyncio
    async def test_without_session_only_logs(self):
        assert await log_error(ValueError("x")) is None

    @pytest.mark.asyncio
    async def test_db_failure_is_swallowed(self):
        db = MagicMock()
        db.flush = AsyncMock(side_effect=RuntimeError("connection lost"))
        assert await log_error(ValueError("x"), db=db) is None
