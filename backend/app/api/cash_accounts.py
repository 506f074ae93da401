"""Cash / financial account endpoints: accounts and their movement log."""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.models.cash_account import CashAccount, CashAccountType
from app.services import cash_accounts
from app.services.error_logger import log_error

logger = logging.getLogger(__name__)
router = APIRouter()


class CashAccountCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    account_type: CashAccountType = CashAccountType.CHECKING
    currency_code: Optional[str] = None
    opening_balance: Decimal = Decimal("0.00")


class CashAccountResponse(BaseModel):
    id: int
    name: str
    account_type: str
    currency_code: str
    balance: float
    status: str


def _account_to_response(account: CashAccount) -> dict:
    return CashAccountResponse(
        id=account.id,
        name=account.name,
        account_type=account.account_type.value,
        currency_code=account.currency_code,
        balance=float(account.balance or 0),
        status=account.status.value,
    ).model_dump()


@router.get("")
async def list_cash_accounts(db: AsyncSession = Depends(get_db)):
    try:
        return [_account_to_response(a) for a in await cash_accounts.list_accounts(db)]
    except Exception as e:
        await log_error(e, db=db, module="api.cash_accounts", function_name="list_cash_accounts")
        raise


@router.post("", status_code=201)
async def create_cash_account(data: CashAccountCreateRequest, db: AsyncSession = Depends(get_db)):
    try:
        account = await cash_accounts.create_account(
            db,
            name=data.name,
            account_type=data.account_type,
            currency_code=data.currency_code or settings.currency_code,
            opening_balance=data.opening_balance,
        )
        return _account_to_response(account)
    except Exception as e:
        await log_error(e, db=db, module="api.cash_accounts", function_name="create_cash_account")
        raise


@router.get("/{account_id}")
async def get_cash_account(account_id: int, db: AsyncSession = Depends(get_db)):
    try:
        account = await cash_accounts.get_account(db, account_id)
        if account is None:
            raise HTTPException(status_code=404, detail="Cash account not found")
        return _account_to_response(account)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.cash_accounts", function_name="get_cash_account")
        raise


@router.get("/{account_id}/movements")
async def list_cash_movements(
    account_id: int,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    try:
        account = await cash_accounts.get_account(db, account_id)
        if account is None:
            raise HTTPException(status_code=404, detail="Cash account not found")
        movements = await cash_accounts.list_movements(db, account_id, limit=limit)
        return [
            {
                "id": m.id,
                "direction": m.direction.value,
                "amount": float(m.amount),
                "balance_after": float(m.balance_after),
                "entry_id": m.entry_id,
                "description": m.description,
                "created_by": m.created_by,
                "created_at": m.created_at.isoformat() if m.created_at else None,
            }
            for m in movements
        ]
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.cash_accounts", function_name="list_cash_movements")
        raise
