"""Fluent builder for ledger entry drafts.

The builder knows nothing about the database: it collects lines against
account ids and produces an :class:`EntryDraft` whose fields map one-to-one
onto :func:`app.services.ledger.entries.create_entry`.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from app.services.ledger.errors import LedgerValidationError
from app.services.ledger.store import to_money


@dataclass
class EntryDraft:
    category: str
    description: str
    accrual_date: date
    due_date: date
    lines: list[dict[str, Any]]
    awaiting_adjustment: bool = False
    adjustment_rule: str | None = None
    contract_id: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        return sum((ln["debit"] for ln in self.lines), Decimal("0.00"))

    def as_kwargs(self) -> dict[str, Any]:
        return {
            "lines": self.lines,
            "accrual_date": self.accrual_date,
            "due_date": self.due_date,
            "category": self.category,
            "description": self.description,
            "contract_id": self.contract_id,
            "awaiting_adjustment": self.awaiting_adjustment,
            "adjustment_rule": self.adjustment_rule,
            "metadata": self.metadata or None,
        }


class EntryBuilder:
    """Accumulates lines and header fields, then validates them in ``build()``.

    Usage::

        draft = (
            EntryBuilder()
            .set_category("Rent")
            .set_description("Rent 03/2026")
            .set_dates(date(2026, 3, 1), date(2026, 3, 11))
            .add_debit(receivable_id, Decimal("1000"), tenant_id, "Rent 03/2026")
            .add_credit(payable_id, Decimal("900"), landlord_id, "Net to landlord")
            .add_credit(fees_id, Decimal("100"), agency_id, "Management fee")
            .build()
        )
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> "EntryBuilder":
        self._category: str | None = None
        self._description: str | None = None
        self._accrual_date: date | None = None
        self._due_date: date | None = None
        self._awaiting_adjustment = False
        self._adjustment_rule: str | None = None
        self._contract_id: int | None = None
        self._lines: list[dict[str, Any]] = []
        self._metadata: dict[str, Any] = {}
        return self

    def set_category(self, category: str) -> "EntryBuilder":
        self._category = category
        return self

    def set_description(self, description: str) -> "EntryBuilder":
        self._description = description
        return self

    def set_dates(self, accrual_date: date, due_date: date) -> "EntryBuilder":
        self._accrual_date = accrual_date
        self._due_date = due_date
        return self

    def set_contract(self, contract_id: int | None) -> "EntryBuilder":
        self._contract_id = contract_id
        return self

    def set_awaiting_adjustment(self, awaiting: bool, rule: str | None = None) -> "EntryBuilder":
        self._awaiting_adjustment = awaiting
        self._adjustment_rule = rule
        return self

    def _add_line(
        self,
        side: str,
        account_id: int,
        amount: Decimal,
        counterparty_id: int | None,
        description: str,
        tax: dict[str, Any] | None,
    ) -> "EntryBuilder":
        amount = to_money(amount)
        if amount < 0:
            raise LedgerValidationError(
                f"{side.capitalize()} amount cannot be negative: {amount}",
                code="INVALID_LINE",
                line=len(self._lines) + 1,
            )
        line = {
            "account_id": account_id,
            "debit": amount if side == "debit" else Decimal("0.00"),
            "credit": amount if side == "credit" else Decimal("0.00"),
            "counterparty_id": counterparty_id,
            "description": description,
        }
        if tax:
            line.update(tax)
        self._lines.append(line)
        return self

    def add_debit(
        self,
        account_id: int,
        amount: Decimal,
        counterparty_id: int | None = None,
        description: str = "",
        tax: dict[str, Any] | None = None,
    ) -> "EntryBuilder":
        return self._add_line("debit", account_id, amount, counterparty_id, description, tax)

    def add_credit(
        self,
        account_id: int,
        amount: Decimal,
        counterparty_id: int | None = None,
        description: str = "",
        tax: dict[str, Any] | None = None,
    ) -> "EntryBuilder":
        return self._add_line("credit", account_id, amount, counterparty_id, description, tax)

    def conditionally(
        self, condition: bool, step: Callable[["EntryBuilder"], "EntryBuilder"]
    ) -> "EntryBuilder":
        if condition:
            step(self)
        return self

    def add_metadata(self, key: str, value: Any) -> "EntryBuilder":
        self._metadata[key] = value
        return self

    def build(self) -> EntryDraft:
        missing = [
            name for name, value in (
                ("category", self._category),
                ("description", self._description),
                ("accrual_date", self._accrual_date),
                ("due_date", self._due_date),
            )
            if not value
        ]
        if missing:
            raise LedgerValidationError(
                f"Entry draft is missing: {', '.join(missing)}",
                code="MISSING_FIELDS",
                fields=missing,
            )
        if not self._lines:
            raise LedgerValidationError(
                "Entry draft must have at least one line", code="EMPTY_LINES"
            )

        # Zero-amount lines (e.g. a 0% commission) carry no information
        lines = [ln for ln in self._lines if ln["debit"] > 0 or ln["credit"] > 0]
        total_dr = sum((ln["debit"] for ln in lines), Decimal("0.00"))
        total_cr = sum((ln["credit"] for ln in lines), Decimal("0.00"))
        if total_dr != total_cr:
            raise LedgerValidationError(
                f"Entry draft is not balanced: debits={total_dr}, credits={total_cr}",
                code="UNBALANCED",
                total_debit=total_dr,
                total_credit=total_cr,
            )
        if not lines:
            raise LedgerValidationError(
                "Entry draft has only zero-amount lines", code="EMPTY_LINES"
            )

        return EntryDraft(
            category=self._category,
            description=self._description,
            accrual_date=self._accrual_date,
            due_date=self._due_date,
            lines=lines,
            awaiting_adjustment=self._awaiting_adjustment,
            adjustment_rule=self._adjustment_rule,
            contract_id=self._contract_id,
            metadata=dict(self._metadata),
        )
