"""Rent Ledger Service - FastAPI Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.database import engine, Base, async_session
from app.middleware.error_capture import ErrorCaptureMiddleware
from app.api import cash_accounts, error_logs, ledger
from app.seed_ledger import seed_ledger_data

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup (dev only); in prod use migrations."""
    if settings.environment == "development":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with async_session() as db:
            await seed_ledger_data(db)
    logger.info("Rent ledger service started (%s)", settings.environment)
    yield
    await engine.dispose()


app = FastAPI(
    title="Rent Ledger API",
    description="Double-entry ledger for rent contracts: payments, proportional liquidation and statements",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = ledger.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Security headers middleware ──────────────────────────────────
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.environment != "development":
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response


# Error capture middleware (outermost, catches everything)
app.add_middleware(ErrorCaptureMiddleware)

# Security headers
app.add_middleware(SecurityHeadersMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Actor-Id"],
)

# Routers
app.include_router(ledger.router, prefix="/api/ledger", tags=["Ledger"])
app.include_router(cash_accounts.router, prefix="/api/cash-accounts", tags=["Cash Accounts"])
app.include_router(error_logs.router, prefix="/api/error-logs", tags=["Error Monitoring"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "rentledger-api", "version": "0.1.0"}
