"""SQLAlchemy models for the rent ledger."""

from app.models.chart import ChartAccount, ChartAccountCategory
from app.models.cash_account import (
    CashAccount, CashAccountStatus, CashAccountType, CashDirection, CashMovement,
)
from app.models.ledger import (
    LedgerEntry, LedgerLine, LedgerAuditEvent,
    EntryStatus, LineSide, AuditAction, VoidReason, ForgivenessReason,
)
from app.models.receipt import (
    Receipt, ReceiptLine, ReceiptOperation, ReceiptLineStatus,
)
from app.models.error_log import ErrorLog, ErrorSeverity

__all__ = [
    "ChartAccount", "ChartAccountCategory",
    "CashAccount", "CashAccountStatus", "CashAccountType", "CashDirection", "CashMovement",
    "LedgerEntry", "LedgerLine", "LedgerAuditEvent",
    "EntryStatus", "LineSide", "AuditAction", "VoidReason", "ForgivenessReason",
    "Receipt", "ReceiptLine", "ReceiptOperation", "ReceiptLineStatus",
    "ErrorLog", "ErrorSeverity",
]
