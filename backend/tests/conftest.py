"""Shared fixtures for the ledger tests.

Entries are plain in-memory ORM objects; the session is a MagicMock whose
``begin_nested()`` behaves like a savepoint context manager, and the entry
loader used by the unit of work is patched to hand back those objects.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.ledger import EntryStatus, LedgerAuditEvent, LedgerEntry, LedgerLine

D = Decimal
ZERO = Decimal("0.00")


def build_entry(
    *,
    debits: list[tuple[int | None, str]],
    credits: list[tuple[int | None, str]],
    status: EntryStatus = EntryStatus.PENDING,
    entry_id: int = 1,
    accrual_date: date = date(2026, 3, 1),
    due_date: date = date(2026, 3, 11),
    category: str = "Rent",
) -> LedgerEntry:
    """Debit lines first, then credits, numbered in that order."""
    lines = []
    number = 1
    for counterparty_id, amount in debits:
        lines.append(LedgerLine(
            line_number=number, account_id=1, description=f"debit {number}",
            debit=D(amount), credit=ZERO, counterparty_id=counterparty_id,
            paid_to_date=ZERO, forgiven_to_date=ZERO, settled_to_date=ZERO,
        ))
        number += 1
    for counterparty_id, amount in credits:
        lines.append(LedgerLine(
            line_number=number, account_id=2 + number, description=f"credit {number}",
            debit=ZERO, credit=D(amount), counterparty_id=counterparty_id,
            paid_to_date=ZERO, forgiven_to_date=ZERO, settled_to_date=ZERO,
        ))
        number += 1
    total = sum((D(a) for _, a in debits), ZERO)
    return LedgerEntry(
        id=entry_id,
        accrual_date=accrual_date,
        due_date=due_date,
        category=category,
        description=f"{category} {accrual_date:%m/%Y}",
        original_amount=total,
        current_amount=total,
        status=status,
        is_adjustable=False,
        lines=lines,
    )


@pytest.fixture
def make_entry():
    return build_entry


@pytest.fixture
def rent_entry():
    """Tenant 10 owes 1000; landlord 20 gets 900, agency 30 gets 100."""
    return build_entry(debits=[(10, "1000")], credits=[(20, "900"), (30, "100")])


@pytest.fixture
def db():
    session = MagicMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()

    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=savepoint)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=savepoint)
    return session


@pytest.fixture
def load_entry(monkeypatch):
    """Serve the given entries (by id) to the per-entry unit of work."""

    def _load(*entries: LedgerEntry) -> AsyncMock:
        by_id = {e.id: e for e in entries}
        loader = AsyncMock(side_effect=lambda db, entry_id, refresh=False: by_id.get(entry_id))
        monkeypatch.setattr("app.services.ledger.concurrency.get_entry", loader)
        monkeypatch.setattr("app.services.ledger.entries.get_entry", loader)
        return loader

    return _load


@pytest.fixture
def cash(monkeypatch):
    """Replace the cash-account collaborator with a recording mock."""
    update = AsyncMock()
    monkeypatch.setattr("app.services.cash_accounts.update_balance", update)
    return update


def audit_events(db) -> list[LedgerAuditEvent]:
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], LedgerAuditEvent)]


@pytest.fixture
def audited():
    return audit_events
