"""
Companion payout account endpoints.

POST /payees/me/account          — Create (or return) the payout account.
POST /payees/me/onboarding-link  — Single-use onboarding redirect.
POST /payees/me/status           — Refresh readiness flags from the processor.
POST /payees/me/dashboard-link   — Single-use dashboard login redirect.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.api.deps import ApiModel, get_caller, get_payment_processor
from session_billing.database import get_db
from session_billing.engine import payouts
from session_billing.providers import PaymentProcessor

router = APIRouter(prefix="/payees", tags=["payees"])


class AccountResponse(ApiModel):
    account_id: str


class OnboardingRequest(ApiModel):
    return_url: Optional[str] = None
    refresh_url: Optional[str] = None


class LinkResponse(ApiModel):
    url: str
    expires_at: Optional[int] = None


class AccountStatusResponse(ApiModel):
    account_id: str
    details_submitted: bool
    payouts_enabled: bool
    charges_enabled: bool
    refreshed_at: Optional[datetime] = None


@router.post("/me/account", response_model=AccountResponse)
async def ensure_account(
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    account_id = await payouts.ensure_payout_account(db, processor, caller)
    return AccountResponse(account_id=account_id)


@router.post("/me/onboarding-link", response_model=LinkResponse)
async def onboarding_link(
    body: Optional[OnboardingRequest] = None,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    body = body or OnboardingRequest()
    link = await payouts.create_onboarding_link(db, processor, caller, body.return_url, body.refresh_url)
    return LinkResponse.model_validate(link)


@router.post("/me/status", response_model=AccountStatusResponse)
async def refresh_status(
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    status = await payouts.refresh_account_status(db, processor, caller)
    return AccountStatusResponse.model_validate(status)


@router.post("/me/dashboard-link", response_model=LinkResponse)
async def dashboard_link(
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    link = await payouts.create_dashboard_login_link(db, processor, caller)
    return LinkResponse.model_validate(link)
