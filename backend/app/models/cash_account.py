"""Cash / financial accounts and their movement log."""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Numeric, Integer, Enum, DateTime, ForeignKey, Text, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class CashAccountType(str, enum.Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CASH = "cash"
    CHEQUES_IN_TRANSIT = "cheques_in_transit"


class CashAccountStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CashDirection(str, enum.Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


class CashAccount(Base):
    __tablename__ = "cash_accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    account_type: Mapped[CashAccountType] = mapped_column(Enum(CashAccountType), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), default="ARS", nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    status: Mapped[CashAccountStatus] = mapped_column(
        Enum(CashAccountStatus), default=CashAccountStatus.ACTIVE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    movements = relationship(
        "CashMovement", back_populates="account", order_by="CashMovement.id"
    )


class CashMovement(Base):
    """One balance change on a cash account, tied to the ledger entry that caused it."""

    __tablename__ = "cash_movements"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("cash_accounts.id"), nullable=False, index=True
    )
    direction: Mapped[CashDirection] = mapped_column(Enum(CashDirection), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_entries.id"), nullable=True, index=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    account = relationship("CashAccount", back_populates="movements")
