"""Receipt models: one cash movement record grouping several ledger operations."""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String, Numeric, Integer, Enum, DateTime, Date, ForeignKey, Text, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.cash_account import CashDirection


class ReceiptOperation(str, enum.Enum):
    COBRO = "cobro"  # collect from a debtor
    PAGO = "pago"  # pay out to a creditor


class ReceiptLineStatus(str, enum.Enum):
    PROCESSED = "processed"
    ERROR = "error"


class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    receipt_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    voucher: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("cash_accounts.id"), nullable=False)

    gross_inflow: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    gross_outflow: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    net_direction: Mapped[CashDirection] = mapped_column(Enum(CashDirection), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    lines = relationship(
        "ReceiptLine",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ReceiptLine.line_number",
    )


class ReceiptLine(Base):
    __tablename__ = "receipt_lines"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    receipt_id: Mapped[int] = mapped_column(
        ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    operation: Mapped[ReceiptOperation] = mapped_column(Enum(ReceiptOperation), nullable=False)
    counterparty_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    requested_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    applied_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    concept: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ReceiptLineStatus] = mapped_column(Enum(ReceiptLineStatus), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    receipt = relationship("Receipt", back_populates="lines")
