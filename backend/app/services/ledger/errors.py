"""Ledger engine exceptions.

Every rejection carries a stable ``code`` (``UNBALANCED``, ``TERMINAL_STATE``…),
a ``kind`` from the four-way taxonomy, the entry id when there is one, and
whatever amounts/status explain the rejection, so the API layer can render a
message without re-reading the entry.
"""

import enum
from datetime import date
from decimal import Decimal
from typing import Any


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    STATE_CONFLICT = "state_conflict"
    NOT_FOUND = "not_found"
    DEPENDENCY_FAILURE = "dependency_failure"


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return getattr(value, "value", value)


class LedgerError(Exception):
    """Base exception for ledger engine errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        code: str,
        entry_id: int | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.entry_id = entry_id
        self.context = context

    def to_dict(self) -> dict:
        context = {k: _plain(v) for k, v in self.context.items()}
        if self.entry_id is not None:
            context["entry_id"] = self.entry_id
        return {
            "code": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "context": context,
        }


class LedgerValidationError(LedgerError):
    """Input rejected: empty lines, unbalanced entry, amount over balance."""

    kind = ErrorKind.VALIDATION


class StateConflictError(LedgerError):
    """Operation not legal in the entry's current status."""

    kind = ErrorKind.STATE_CONFLICT


class EntryNotFoundError(LedgerError):
    """Entry, line, or counterparty absent."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entry_id: int, message: str | None = None) -> None:
        super().__init__(
            message or f"Ledger entry {entry_id} not found",
            code="NOT_FOUND",
            entry_id=entry_id,
        )


class DependencyFailureError(LedgerError):
    """A collaborator (cash account) failed; the entry write was rolled back."""

    kind = ErrorKind.DEPENDENCY_FAILURE
