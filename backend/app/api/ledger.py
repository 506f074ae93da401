"""Rent ledger API endpoints.

Covers the entry lifecycle, debtor payments, creditor liquidations,
forgiveness/cancellation, account statements, receipts, late interest and
the contract-accrual entry factory.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.ledger import (
    EntryStatus,
    ForgivenessReason,
    LedgerAuditEvent,
    LedgerEntry,
    VoidReason,
)
from app.models.receipt import ReceiptOperation
from app.services.ledger import (
    entries,
    late_interest,
    payments,
    receipts,
    settlement,
    statement,
    write_offs,
)
from app.services.ledger.entry_factory import DepositMovement, EntryFactory, FeePayer
from app.services.ledger.errors import ErrorKind, LedgerError
from app.services.error_logger import log_error

logger = logging.getLogger(__name__)
router = APIRouter()
limiter = Limiter(key_func=get_remote_address)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STATE_CONFLICT: 409,
    ErrorKind.DEPENDENCY_FAILURE: 502,
}


def _http_error(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=STATUS_BY_KIND[exc.kind], detail=exc.to_dict())


def get_actor_id(x_actor_id: Optional[int] = Header(None)) -> Optional[int]:
    """Id of the operator performing the request, as forwarded by the gateway."""
    return x_actor_id


# ===================================================================
# Pydantic Schemas
# ===================================================================

# -- Entry --

class LedgerLineInput(BaseModel):
    account_id: int
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    counterparty_id: Optional[int] = None
    description: Optional[str] = None
    tax_included: bool = False
    tax_rate: Optional[Decimal] = None
    taxable_base: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None


class EntryCreateRequest(BaseModel):
    lines: list[LedgerLineInput]
    accrual_date: date
    due_date: date
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    contract_id: Optional[int] = None
    awaiting_adjustment: bool = False
    awaiting_invoice: bool = False
    adjustment_rule: Optional[str] = None
    metadata: Optional[dict] = None


class LedgerLineResponse(BaseModel):
    id: Optional[int] = None
    line_number: int
    account_id: int
    description: str
    debit: float
    credit: float
    counterparty_id: Optional[int] = None
    paid_to_date: float
    forgiven_to_date: float
    settled_to_date: float
    tax_included: bool = False
    tax_rate: Optional[float] = None
    taxable_base: Optional[float] = None
    tax_amount: Optional[float] = None


class LedgerEntryResponse(BaseModel):
    id: int
    contract_id: Optional[int] = None
    accrual_date: str
    due_date: str
    category: str
    description: str
    original_amount: float
    current_amount: float
    status: str
    collected: float
    forgiven: float
    outstanding: float
    is_adjustable: bool = False
    void_reason: Optional[str] = None
    void_reason_code: Optional[str] = None
    payment_date: Optional[str] = None
    payment_method: Optional[str] = None
    settlement_date: Optional[str] = None
    settlement_method: Optional[str] = None
    late_interest_through: Optional[str] = None
    metadata: Optional[dict] = None
    version: Optional[int] = None
    lines: list[LedgerLineResponse] = []


class AuditEventResponse(BaseModel):
    id: Optional[int] = None
    action: str
    actor_id: Optional[int] = None
    previous_status: Optional[str] = None
    new_status: str
    amount: Optional[float] = None
    note: Optional[str] = None
    details: Optional[dict] = None
    created_at: Optional[str] = None


# -- Operations --

class PaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: str = Field(..., min_length=1, max_length=50)
    payment_date: Optional[date] = None
    voucher: Optional[str] = None
    account_id: Optional[int] = None


class SettlementRequest(BaseModel):
    counterparty_id: int
    method: str = Field(..., min_length=1, max_length=50)
    settlement_date: Optional[date] = None
    voucher: Optional[str] = None
    account_id: Optional[int] = None


class ForgiveRequest(BaseModel):
    reason: str = Field(..., min_length=10, max_length=500)
    reason_code: ForgivenessReason = ForgivenessReason.OTHER
    authorizer_id: int
    amount: Optional[Decimal] = None


class VoidRequest(BaseModel):
    reason: str = Field(..., min_length=10, max_length=500)
    reason_code: VoidReason = VoidReason.OTHER


class InvoiceRequest(BaseModel):
    invoice_reference: Optional[str] = Field(None, max_length=100)


class IndexAdjustmentRequest(BaseModel):
    index_value: Decimal = Field(..., gt=0)
    base_index_value: Decimal = Field(..., gt=0)


# -- Receipts --

class ReceiptLineInput(BaseModel):
    entry_id: int
    operation: ReceiptOperation
    amount: Optional[Decimal] = None
    counterparty_id: Optional[int] = None
    concept: Optional[str] = None


class ReceiptRequest(BaseModel):
    lines: list[ReceiptLineInput]
    account_id: int
    method: str = Field(..., min_length=1, max_length=50)
    receipt_date: Optional[date] = None
    voucher: Optional[str] = None
    notes: Optional[str] = None


# -- Late interest --

class LateInterestRequest(BaseModel):
    entry_ids: list[int]
    as_of: Optional[date] = None
    daily_rate: Optional[Decimal] = Field(None, gt=0)


# -- Accruals --

class RentAccrualRequest(BaseModel):
    property_address: str
    period: date
    period_number: int = Field(..., ge=1)
    total_periods: int = Field(..., ge=1)
    amount: Decimal = Field(..., gt=0)
    commission_rate: Decimal = Field(..., ge=0, lt=1)
    tenant_id: int
    landlord_id: int
    agency_id: Optional[int] = None
    tenant_name: Optional[str] = None
    landlord_name: Optional[str] = None
    contract_id: Optional[int] = None
    adjustable: bool = False
    adjustment_rule: Optional[str] = None


class DepositAccrualRequest(BaseModel):
    property_address: str
    amount: Decimal = Field(..., gt=0)
    on: date
    movement: DepositMovement
    tenant_id: Optional[int] = None
    landlord_id: Optional[int] = None
    contract_id: Optional[int] = None


class FeeAccrualRequest(BaseModel):
    property_address: str
    total_contract_amount: Decimal = Field(..., gt=0)
    percentage: Decimal = Field(..., gt=0, le=100)
    installments: int = Field(..., ge=1)
    start_date: date
    payer: FeePayer
    payer_id: int
    agency_id: Optional[int] = None
    payer_name: Optional[str] = None
    contract_id: Optional[int] = None


# ===================================================================
# Helpers
# ===================================================================

def _serialize_date(d) -> Optional[str]:
    if d is None:
        return None
    return d.isoformat()


def _opt_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def _entry_to_response(entry: LedgerEntry) -> dict:
    lines = [
        LedgerLineResponse(
            id=ln.id,
            line_number=ln.line_number,
            account_id=ln.account_id,
            description=ln.description,
            debit=float(ln.debit or 0),
            credit=float(ln.credit or 0),
            counterparty_id=ln.counterparty_id,
            paid_to_date=float(ln.paid_to_date or 0),
            forgiven_to_date=float(ln.forgiven_to_date or 0),
            settled_to_date=float(ln.settled_to_date or 0),
            tax_included=bool(ln.tax_included),
            tax_rate=_opt_float(ln.tax_rate),
            taxable_base=_opt_float(ln.taxable_base),
            tax_amount=_opt_float(ln.tax_amount),
        )
        for ln in entry.lines
    ]
    return LedgerEntryResponse(
        id=entry.id,
        contract_id=entry.contract_id,
        accrual_date=_serialize_date(entry.accrual_date),
        due_date=_serialize_date(entry.due_date),
        category=entry.category,
        description=entry.description,
        original_amount=float(entry.original_amount),
        current_amount=float(entry.current_amount),
        status=entry.status.value,
        collected=float(entry.collected),
        forgiven=float(entry.forgiven),
        outstanding=float(entry.outstanding),
        is_adjustable=bool(entry.is_adjustable),
        void_reason=entry.void_reason,
        void_reason_code=entry.void_reason_code.value if entry.void_reason_code else None,
        payment_date=_serialize_date(entry.payment_date),
        payment_method=entry.payment_method,
        settlement_date=_serialize_date(entry.settlement_date),
        settlement_method=entry.settlement_method,
        late_interest_through=_serialize_date(entry.late_interest_through),
        metadata=entry.metadata_,
        version=entry.version,
        lines=lines,
    ).model_dump()


def _event_to_response(event: LedgerAuditEvent) -> dict:
    return AuditEventResponse(
        id=event.id,
        action=event.action.value,
        actor_id=event.actor_id,
        previous_status=event.previous_status.value if event.previous_status else None,
        new_status=event.new_status.value,
        amount=_opt_float(event.amount),
        note=event.note,
        details=event.details,
        created_at=_serialize_date(event.created_at),
    ).model_dump()


def _movement_to_dict(m: statement.StatementMovement) -> dict:
    base = {
        "entry_id": m.entry_id,
        "line_number": m.line_number,
        "side": m.side.value,
        "accrual_date": _serialize_date(m.accrual_date),
        "due_date": _serialize_date(m.due_date),
        "category": m.category,
        "description": m.description,
        "entry_status": m.entry_status.value,
        "original_amount": float(m.original_amount),
    }
    if m.side.value == "debit":
        base.update({
            "paid": float(m.paid),
            "forgiven": float(m.forgiven),
            "pending": float(m.pending),
        })
    else:
        base.update({
            "collected_from_debtor": float(m.collected_from_debtor),
            "proportion": float(m.proportion),
            "entitlement": float(m.entitlement),
            "already_settled": float(m.already_settled),
            "available": float(m.available),
        })
    return base


def _statement_to_response(st: statement.Statement) -> dict:
    t = st.totals
    return {
        "counterparty_id": st.counterparty_id,
        "cutoff": _serialize_date(st.cutoff),
        "movements": [_movement_to_dict(m) for m in st.movements],
        "totals": {
            "total_debit": float(t.total_debit),
            "total_credit": float(t.total_credit),
            "total_paid": float(t.total_paid),
            "total_settled": float(t.total_settled),
            "total_pending": float(t.total_pending),
            "total_available": float(t.total_available),
            "net_balance": float(t.net_balance),
            "resolved_count": t.resolved_count,
            "partial_count": t.partial_count,
            "open_count": t.open_count,
        },
    }


# ===================================================================
# Entry lifecycle
# ===================================================================

@router.post("/entries", status_code=201)
async def create_entry_endpoint(
    data: EntryCreateRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """Create a balanced entry in PENDING (or PENDING_ADJUSTMENT / PENDING_INVOICE)."""
    try:
        try:
            entry = await entries.create_entry(
                db,
                lines=[ln.model_dump() for ln in data.lines],
                accrual_date=data.accrual_date,
                due_date=data.due_date,
                category=data.category,
                description=data.description,
                contract_id=data.contract_id,
                awaiting_adjustment=data.awaiting_adjustment,
                awaiting_invoice=data.awaiting_invoice,
                adjustment_rule=data.adjustment_rule,
                metadata=data.metadata,
                created_by=actor_id,
            )
            return _entry_to_response(entry)
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="create_entry_endpoint")
        raise


@router.get("/entries")
async def list_entries_endpoint(
    contract_id: Optional[int] = None,
    counterparty_id: Optional[int] = None,
    category: Optional[str] = None,
    status: Optional[EntryStatus] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    pending_only: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """List entries with filtering and pagination."""
    try:
        items, total = await entries.list_entries(
            db,
            contract_id=contract_id,
            counterparty_id=counterparty_id,
            category=category,
            status=status,
            date_from=date_from,
            date_to=date_to,
            pending_only=pending_only,
            page=page,
            page_size=page_size,
        )
        return {
            "items": [_entry_to_response(e) for e in items],
            "total": total,
            "page": page,
            "page_size": page_size,
        }
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="list_entries_endpoint")
        raise


@router.get("/entries/{entry_id}")
async def get_entry_endpoint(entry_id: int, db: AsyncSession = Depends(get_db)):
    try:
        try:
            entry = await entries.require_entry(db, entry_id)
            return _entry_to_response(entry)
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="get_entry_endpoint")
        raise


@router.get("/entries/{entry_id}/history")
async def get_entry_history_endpoint(entry_id: int, db: AsyncSession = Depends(get_db)):
    try:
        try:
            events = await entries.get_entry_history(db, entry_id)
            return [_event_to_response(ev) for ev in events]
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="get_entry_history_endpoint")
        raise


@router.post("/entries/{entry_id}/index-adjustment")
async def index_adjustment_endpoint(
    entry_id: int,
    data: IndexAdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        try:
            entry = await entries.apply_index_adjustment(
                db,
                entry_id,
                index_value=data.index_value,
                base_index_value=data.base_index_value,
                actor_id=actor_id,
            )
            return _entry_to_response(entry)
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="index_adjustment_endpoint")
        raise


# ===================================================================
# Payments, liquidation, write-offs
# ===================================================================

@router.post("/entries/{entry_id}/payments")
async def register_payment_endpoint(
    entry_id: int,
    data: PaymentRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """Apply a debtor payment to the entry's debit lines."""
    try:
        try:
            entry = await payments.register_payment(
                db,
                entry_id,
                amount=data.amount,
                method=data.method,
                payment_date=data.payment_date,
                voucher=data.voucher,
                account_id=data.account_id,
                actor_id=actor_id,
            )
            return _entry_to_response(entry)
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="register_payment_endpoint")
        raise


@router.post("/entries/{entry_id}/settlements")
async def settle_creditor_endpoint(
    entry_id: int,
    data: SettlementRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """Pay a creditor their proportional share of the cash collected so far."""
    try:
        try:
            result = await settlement.settle_creditor(
                db,
                entry_id,
                counterparty_id=data.counterparty_id,
                method=data.method,
                settlement_date=data.settlement_date,
                voucher=data.voucher,
                account_id=data.account_id,
                actor_id=actor_id,
            )
            return {
                "payout": float(result.payout),
                "collected": float(result.collected),
                "entry": _entry_to_response(result.entry),
            }
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="settle_creditor_endpoint")
        raise


@router.post("/entries/{entry_id}/forgive")
async def forgive_debt_endpoint(
    entry_id: int,
    data: ForgiveRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        try:
            entry = await write_offs.forgive_debt(
                db,
                entry_id,
                reason=data.reason,
                reason_code=data.reason_code,
                authorizer_id=data.authorizer_id,
                amount=data.amount,
                actor_id=actor_id,
            )
            return _entry_to_response(entry)
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="forgive_debt_endpoint")
        raise


@router.post("/entries/{entry_id}/void")
async def void_entry_endpoint(
    entry_id: int,
    data: VoidRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        try:
            entry = await write_offs.void_entry(
                db,
                entry_id,
                reason=data.reason,
                reason_code=data.reason_code,
                actor_id=actor_id,
            )
            return _entry_to_response(entry)
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="void_entry_endpoint")
        raise


@router.post("/entries/{entry_id}/invoice")
async def mark_invoiced_endpoint(
    entry_id: int,
    data: InvoiceRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        try:
            entry = await entries.mark_invoiced(
                db,
                entry_id,
                invoice_reference=data.invoice_reference,
                actor_id=actor_id,
            )
            return _entry_to_response(entry)
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="mark_invoiced_endpoint")
        raise


# ===================================================================
# Statement
# ===================================================================

@router.get("/statements/{counterparty_id}")
async def get_statement_endpoint(
    counterparty_id: int,
    cutoff: Optional[date] = None,
    date_from: Optional[date] = None,
    pending_only: bool = False,
    include_voided: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Point-in-time account statement for one counterparty."""
    try:
        st = await statement.get_statement(
            db,
            counterparty_id,
            cutoff=cutoff,
            date_from=date_from,
            pending_only=pending_only,
            include_voided=include_voided,
        )
        return _statement_to_response(st)
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="get_statement_endpoint")
        raise


# ===================================================================
# Receipts
# ===================================================================

@router.post("/receipts", status_code=201)
@limiter.limit("60/minute")
async def process_receipt_endpoint(
    request: Request,
    data: ReceiptRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """Process collections and payouts as one receipt; failed lines are reported, not fatal."""
    try:
        try:
            result = await receipts.process_receipt(
                db,
                [receipts.ReceiptItem(**ln.model_dump()) for ln in data.lines],
                account_id=data.account_id,
                receipt_date=data.receipt_date,
                method=data.method,
                voucher=data.voucher,
                notes=data.notes,
                actor_id=actor_id,
            )
        except LedgerError as e:
            raise _http_error(e)
        rc = result.receipt
        return {
            "id": rc.id,
            "receipt_number": rc.receipt_number,
            "receipt_date": _serialize_date(rc.receipt_date),
            "account_id": rc.account_id,
            "method": rc.method,
            "gross_inflow": float(rc.gross_inflow),
            "gross_outflow": float(rc.gross_outflow),
            "net_amount": float(rc.net_amount),
            "net_direction": rc.net_direction.value,
            "lines": [
                {
                    "line_number": ln.line_number,
                    "entry_id": ln.entry_id,
                    "operation": ln.operation.value,
                    "counterparty_id": ln.counterparty_id,
                    "applied_amount": float(ln.applied_amount),
                    "status": ln.status.value,
                    "error_code": ln.error_code,
                    "error_message": ln.error_message,
                }
                for ln in result.lines
            ],
        }
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="process_receipt_endpoint")
        raise


# ===================================================================
# Late interest
# ===================================================================

@router.get("/late-interest/overdue")
async def list_overdue_endpoint(
    as_of: Optional[date] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    try:
        items, total = await late_interest.find_overdue_entries(
            db, as_of=as_of, page=page, page_size=page_size
        )
        return {
            "items": [
                {
                    "entry_id": it.entry.id,
                    "category": it.entry.category,
                    "due_date": _serialize_date(it.entry.due_date),
                    "days_overdue": it.days_overdue,
                    "days_charged": it.days_charged,
                    "outstanding": float(it.outstanding),
                    "interest": float(it.interest),
                }
                for it in items
            ],
            "total": total,
            "page": page,
            "page_size": page_size,
        }
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="list_overdue_endpoint")
        raise


@router.post("/late-interest/apply")
@limiter.limit("10/minute")
async def apply_late_interest_endpoint(
    request: Request,
    data: LateInterestRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        try:
            run = await late_interest.apply_late_interest(
                db,
                data.entry_ids,
                as_of=data.as_of,
                daily_rate=data.daily_rate,
                actor_id=actor_id,
            )
        except LedgerError as e:
            raise _http_error(e)
        return {
            "as_of": _serialize_date(run.as_of),
            "daily_rate": float(run.daily_rate),
            "total_interest": float(run.total_interest),
            "results": [
                {
                    "entry_id": o.entry_id,
                    "status": "processed" if o.ok else "error",
                    "interest_entry_id": o.interest_entry_id,
                    "amount": _opt_float(o.amount),
                    "error_code": o.error_code,
                    "error_message": o.error_message,
                }
                for o in run.outcomes
            ],
        }
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="apply_late_interest_endpoint")
        raise


# ===================================================================
# Contract accruals
# ===================================================================

async def _persist_drafts(factory: EntryFactory, drafts, actor_id: Optional[int]) -> list[dict]:
    created = [await factory.create(d, created_by=actor_id) for d in drafts]
    return [_entry_to_response(e) for e in created]


@router.post("/accruals/rent", status_code=201)
async def accrue_rent_endpoint(
    data: RentAccrualRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """Monthly rent: tenant owes the rent, split between landlord and agency fee."""
    try:
        try:
            factory = EntryFactory(db)
            draft = await factory.monthly_rent(**data.model_dump())
            return (await _persist_drafts(factory, [draft], actor_id))[0]
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="accrue_rent_endpoint")
        raise


@router.post("/accruals/deposit", status_code=201)
async def accrue_deposit_endpoint(
    data: DepositAccrualRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    try:
        try:
            factory = EntryFactory(db)
            draft = await factory.security_deposit(**data.model_dump())
            return (await _persist_drafts(factory, [draft], actor_id))[0]
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="accrue_deposit_endpoint")
        raise


@router.post("/accruals/fees", status_code=201)
async def accrue_fees_endpoint(
    data: FeeAccrualRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """Contract fee, one entry per installment."""
    try:
        try:
            factory = EntryFactory(db)
            params = data.model_dump()
            drafts = [
                await factory.contract_fee(installment_number=n, **params)
                for n in range(1, data.installments + 1)
            ]
            return await _persist_drafts(factory, drafts, actor_id)
        except LedgerError as e:
            raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.ledger", function_name="accrue_fees_endpoint")
        raise
