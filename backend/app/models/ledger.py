"""Ledger models for rent-contract accounting.

Implements the journal entry store ("asientos") with:
- Debit/credit lines ("partidas") that carry their own payment and
  settlement accumulators
- A status column driven by the lifecycle state machine
- An append-only audit trail per entry
- A version column used for optimistic concurrency on every write
"""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String,
    Numeric,
    Integer,
    Boolean,
    Enum,
    DateTime,
    Date,
    ForeignKey,
    Text,
    JSON,
    Index,
    CheckConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

ZERO = Decimal("0.00")


def _amount(value: Decimal | None) -> Decimal:
    return value if value is not None else ZERO


# ===================================================================
# Enumerations
# ===================================================================


class EntryStatus(str, enum.Enum):
    PENDING = "pending"
    PENDING_ADJUSTMENT = "pending_adjustment"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOIDED = "voided"
    FORGIVEN = "forgiven"
    SETTLED = "settled"
    PENDING_INVOICE = "pending_invoice"
    INVOICED = "invoiced"


class LineSide(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class AuditAction(str, enum.Enum):
    CREATED = "created"
    PAYMENT = "payment"
    SETTLEMENT = "settlement"
    FORGIVENESS = "forgiveness"
    VOID = "void"
    INDEX_ADJUSTMENT = "index_adjustment"
    INVOICED = "invoiced"


class VoidReason(str, enum.Enum):
    DATA_ENTRY_ERROR = "data_entry_error"
    DUPLICATE = "duplicate"
    CONTRACT_CANCELLED = "contract_cancelled"
    CONTRACT_TERMINATED = "contract_terminated"
    OTHER = "other"


class ForgivenessReason(str, enum.Enum):
    COMMERCIAL_AGREEMENT = "commercial_agreement"
    SOCIAL_CASE = "social_case"
    SYSTEM_ERROR = "system_error"
    OTHER = "other"


# ===================================================================
# Entry store
# ===================================================================


class LedgerEntry(Base):
    """One double-entry journal record for a contract obligation.

    Lines are fixed at creation; only their accumulators, the status and
    the terminal metadata change afterwards.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_contract_status_due", "contract_id", "status", "due_date"),
        Index("ix_ledger_entries_accrual_date", "accrual_date"),
        Index("ix_ledger_entries_status", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    contract_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    accrual_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    original_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    status: Mapped[EntryStatus] = mapped_column(
        Enum(EntryStatus), default=EntryStatus.PENDING, nullable=False
    )
    is_adjustable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    adjustment_rule: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Terminal metadata
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    void_reason_code: Mapped[VoidReason | None] = mapped_column(Enum(VoidReason), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    forgiven_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    forgiven_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settlement_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    settlement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    settlement_voucher: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_voucher: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Last day already covered by a late-interest charge
    late_interest_through: Mapped[date | None] = mapped_column(Date, nullable=True)

    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines = relationship(
        "LedgerLine",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="LedgerLine.line_number",
    )
    audit_events = relationship(
        "LedgerAuditEvent",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="LedgerAuditEvent.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def debit_lines(self) -> list["LedgerLine"]:
        return [ln for ln in self.lines if ln.is_debit]

    @property
    def credit_lines(self) -> list["LedgerLine"]:
        return [ln for ln in self.lines if ln.is_credit]

    @property
    def total_debits(self) -> Decimal:
        return sum((_amount(ln.debit) for ln in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((_amount(ln.credit) for ln in self.lines), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    @property
    def collected(self) -> Decimal:
        """Cash actually received from the debtor so far."""
        return sum((_amount(ln.paid_to_date) for ln in self.debit_lines), ZERO)

    @property
    def forgiven(self) -> Decimal:
        return sum((_amount(ln.forgiven_to_date) for ln in self.debit_lines), ZERO)

    @property
    def outstanding(self) -> Decimal:
        return _amount(self.current_amount) - self.collected - self.forgiven


class LedgerLine(Base):
    """One debit or credit leg of an entry."""

    __tablename__ = "ledger_lines"
    __table_args__ = (
        CheckConstraint(
            "(debit = 0 AND credit > 0) OR "
            "(debit > 0 AND credit = 0) OR "
            "(debit = 0 AND credit = 0)",
            name="ck_ledger_line_debit_or_credit",
        ),
        CheckConstraint(
            "paid_to_date >= 0 AND forgiven_to_date >= 0 AND paid_to_date + forgiven_to_date <= debit",
            name="ck_ledger_line_paid_within_debit",
        ),
        CheckConstraint("settled_to_date >= 0 AND settled_to_date <= credit", name="ck_ledger_line_settled"),
        Index("ix_ledger_lines_entry", "entry_id"),
        Index("ix_ledger_lines_counterparty", "counterparty_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        ForeignKey("ledger_entries.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[int] = mapped_column(ForeignKey("chart_accounts.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    debit: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=ZERO, nullable=False)
    credit: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=ZERO, nullable=False)
    counterparty_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    paid_to_date: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=ZERO, nullable=False)
    forgiven_to_date: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=ZERO, nullable=False)
    settled_to_date: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=ZERO, nullable=False)

    # Tax detail, carried through untouched
    tax_included: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    taxable_base: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    entry = relationship("LedgerEntry", back_populates="lines")
    account = relationship("ChartAccount")

    @property
    def is_debit(self) -> bool:
        return _amount(self.debit) > 0

    @property
    def is_credit(self) -> bool:
        return _amount(self.credit) > 0

    @property
    def side(self) -> LineSide:
        return LineSide.DEBIT if self.is_debit else LineSide.CREDIT

    @property
    def shortfall(self) -> Decimal:
        """What the debtor still owes on this line."""
        if not self.is_debit:
            return ZERO
        return _amount(self.debit) - _amount(self.paid_to_date) - _amount(self.forgiven_to_date)


class LedgerAuditEvent(Base):
    """Append-only history of every mutation applied to an entry."""

    __tablename__ = "ledger_audit_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        ForeignKey("ledger_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_status: Mapped[EntryStatus | None] = mapped_column(Enum(EntryStatus), nullable=True)
    new_status: Mapped[EntryStatus] = mapped_column(Enum(EntryStatus), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    entry = relationship("LedgerEntry", back_populates="audit_events")
