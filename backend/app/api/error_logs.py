"""Error Logs API: operator endpoints for monitoring rejected and failed requests."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.error_log import ErrorLog, ErrorSeverity

logger = logging.getLogger(__name__)
router = APIRouter()


# ── List / Search ───────────────────────────────────────────

@router.get("")
async def list_error_logs(
    severity: Optional[ErrorSeverity] = Query(None),
    error_code: Optional[str] = Query(None),
    error_kind: Optional[str] = Query(None, description="validation, state_conflict, not_found or dependency_failure"),
    entry_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    path: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List error logs with filtering and pagination."""
    q = select(ErrorLog).order_by(desc(ErrorLog.created_at))

    if severity:
        q = q.where(ErrorLog.severity == severity)
    if error_code:
        q = q.where(ErrorLog.error_code == error_code)
    if error_kind:
        q = q.where(ErrorLog.error_kind == error_kind)
    if entry_id is not None:
        q = q.where(ErrorLog.entry_id == entry_id)
    if search:
        pattern = f"%{search}%"
        q = q.where(
            ErrorLog.message.ilike(pattern)
            | ErrorLog.error_type.ilike(pattern)
            | ErrorLog.request_path.ilike(pattern)
        )
    if path:
        q = q.where(ErrorLog.request_path.ilike(f"%{path}%"))

    count_q = select(func.count()).select_from(q.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    result = await db.execute(q.offset(offset).limit(limit))
    logs = result.scalars().all()

    return {
        "total": total,
        "offset": offset,
        "limit": limit,
        "items": [_log_to_dict(log, include_traceback=False) for log in logs],
    }


# ── Summary / Stats ────────────────────────────────────────

@router.get("/stats")
async def error_stats(
    hours: int = Query(24, ge=1, le=720),
    db: AsyncSession = Depends(get_db),
):
    """Counts by severity and ledger error kind, and the most frequent rejection codes."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours)

    severity_q = await db.execute(
        select(ErrorLog.severity, func.count(ErrorLog.id))
        .where(ErrorLog.created_at >= since)
        .group_by(ErrorLog.severity)
    )
    by_severity = {row[0].value: row[1] for row in severity_q.all()}

    kind_q = await db.execute(
        select(ErrorLog.error_kind, func.count(ErrorLog.id))
        .where(ErrorLog.created_at >= since, ErrorLog.error_kind.isnot(None))
        .group_by(ErrorLog.error_kind)
    )
    by_kind = {row[0]: row[1] for row in kind_q.all()}

    codes_q = await db.execute(
        select(ErrorLog.error_code, func.count(ErrorLog.id).label("cnt"))
        .where(ErrorLog.created_at >= since, ErrorLog.error_code.isnot(None))
        .group_by(ErrorLog.error_code)
        .order_by(desc("cnt"))
        .limit(10)
    )
    top_codes = [{"error_code": row[0], "count": row[1]} for row in codes_q.all()]

    return {
        "period_hours": hours,
        "total_in_period": sum(by_severity.values()),
        "by_severity": by_severity,
        "by_kind": by_kind,
        "top_error_codes": top_codes,
    }


# ── Detail ──────────────────────────────────────────────────

@router.get("/{error_id}")
async def get_error_log(error_id: int, db: AsyncSession = Depends(get_db)):
    """Get a single error log with full traceback."""
    q = await db.execute(select(ErrorLog).where(ErrorLog.id == error_id))
    log = q.scalar_one_or_none()
    if not log:
        raise HTTPException(404, "Error log not found")
    return _log_to_dict(log, include_traceback=True)


# ── Serializer ──────────────────────────────────────────────

def _log_to_dict(log: ErrorLog, *, include_traceback: bool = True) -> dict:
    return {
        "id": log.id,
        "severity": log.severity.value,
        "error_type": log.error_type,
        "error_code": log.error_code,
        "error_kind": log.error_kind,
        "message": log.message,
        "traceback": log.traceback if include_traceback else None,
        "module": log.module,
        "function_name": log.function_name,
        "entry_id": log.entry_id,
        "request_method": log.request_method,
        "request_path": log.request_path,
        "request_body": log.request_body,
        "status_code": log.status_code,
        "response_time_ms": log.response_time_ms,
        "ip_address": log.ip_address,
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }
