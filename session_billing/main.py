"""
Session Billing — hold-and-capture payments for time-billed conversations.

Saves the speaker's card, places a manual-capture hold for the committed
price, captures the billable share once the session completes, and onboards
companions' payout accounts.

Start the server:
    uvicorn session_billing.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from session_billing.api.health import router as health_router
from session_billing.api.offers import router as offers_router
from session_billing.api.payees import router as payees_router
from session_billing.api.payers import router as payers_router
from session_billing.api.sessions import router as sessions_router
from session_billing.config import settings
from session_billing.database import close_db, init_db
from session_billing.errors import BillingError, InvalidArgument, Unauthenticated

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("session_billing.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup, release its connections on shutdown."""
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title="Session Billing",
    description=(
        "Card vault, manual-capture holds and proportional capture for time-billed "
        "conversation sessions, plus payout account onboarding for companions."
    ),
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # An unreadable body fails before dependencies run; anonymous callers still get 401
    if not request.headers.get(settings.caller_header, "").strip():
        error = Unauthenticated()
        return JSONResponse(status_code=error.http_status, content={"error": error.to_dict()})

    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else first.get("msg", "invalid request")
    error = InvalidArgument(message)
    return JSONResponse(status_code=error.http_status, content={"error": error.to_dict()})


app.include_router(health_router)
app.include_router(payers_router, prefix="/api")
app.include_router(sessions_router, prefix="/api")
app.include_router(offers_router, prefix="/api")
app.include_router(payees_router, prefix="/api")
