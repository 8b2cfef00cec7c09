"""
Payee account lifecycle: the companion's payout-receiving account.

Only account readiness is tracked here; moving funds to the account is
handled elsewhere. Readiness flags are copied from the processor on an
explicit refresh and never derived locally.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.audit.logger import log_event
from session_billing.config import settings
from session_billing.engine.guards import call_processor, get_or_create, require_caller
from session_billing.errors import FailedPrecondition, InvalidArgument
from session_billing.models.records import Payee
from session_billing.providers.base import PaymentProcessor, RedirectLink

logger = logging.getLogger("session_billing.payouts")


@dataclass
class AccountStatus:
    account_id: str
    details_submitted: bool
    payouts_enabled: bool
    charges_enabled: bool
    refreshed_at: Optional[datetime]


def _redirect_url(value: Optional[str], default: str, field_name: str) -> str:
    if value is None or not value.strip():
        return default
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidArgument(f"{field_name} must be an absolute http(s) URL.")
    return value.strip()


async def _linked_payee(db: AsyncSession, payee_id: str) -> Payee:
    payee = await db.get(Payee, payee_id)
    if payee is None or not payee.account_id:
        raise FailedPrecondition("No payout account linked.")
    return payee


async def ensure_payout_account(
    db: AsyncSession,
    processor: PaymentProcessor,
    payee_id: Optional[str],
) -> str:
    """Return the caller's payout account id, creating the account on first use."""
    payee_id = require_caller(payee_id)
    payee = await get_or_create(db, Payee, payee_id)
    if payee.account_id:
        return payee.account_id

    account = await call_processor(
        "Payout account creation failed",
        processor.create_payout_account,
        payee_id,
        settings.connect_country,
        idempotency_key=f"payee:{payee_id}:account",
    )
    payee.account_id = account.id
    await log_event(db, "payout_account_created", actor_id=payee_id, details={"account_id": account.id})
    await db.commit()

    logger.info("Payee %s: payout account %s created", payee_id, account.id)
    return account.id


async def create_onboarding_link(
    db: AsyncSession,
    processor: PaymentProcessor,
    payee_id: Optional[str],
    return_url: Optional[str] = None,
    refresh_url: Optional[str] = None,
) -> RedirectLink:
    """
    Issue a single-use onboarding link for the caller's payout account.

    The account is created first if needed. Return/refresh destinations
    default to the configured ones.
    """
    payee_id = require_caller(payee_id)
    return_url = _redirect_url(return_url, settings.onboarding_return_url, "returnUrl")
    refresh_url = _redirect_url(refresh_url, settings.onboarding_refresh_url, "refreshUrl")

    account_id = await ensure_payout_account(db, processor, payee_id)
    return await call_processor(
        "Onboarding link creation failed",
        processor.create_onboarding_link,
        account_id,
        return_url,
        refresh_url,
    )


async def refresh_account_status(
    db: AsyncSession,
    processor: PaymentProcessor,
    payee_id: Optional[str],
) -> AccountStatus:
    """Fetch readiness flags from the processor and store them."""
    payee_id = require_caller(payee_id)
    payee = await _linked_payee(db, payee_id)

    account = await call_processor(
        "Payout account lookup failed", processor.retrieve_payout_account, payee.account_id
    )
    payee.details_submitted = account.details_submitted
    payee.payouts_enabled = account.payouts_enabled
    payee.charges_enabled = account.charges_enabled
    payee.status_refreshed_at = datetime.now(timezone.utc)
    await log_event(db, "payout_account_refreshed", actor_id=payee_id, details={
        "account_id": account.id,
        "details_submitted": account.details_submitted,
        "payouts_enabled": account.payouts_enabled,
        "charges_enabled": account.charges_enabled,
    })
    await db.commit()

    return AccountStatus(
        account_id=payee.account_id,
        details_submitted=payee.details_submitted,
        payouts_enabled=payee.payouts_enabled,
        charges_enabled=payee.charges_enabled,
        refreshed_at=payee.status_refreshed_at,
    )


async def create_dashboard_login_link(
    db: AsyncSession,
    processor: PaymentProcessor,
    payee_id: Optional[str],
) -> RedirectLink:
    """Issue a single-use login link to the payout account dashboard."""
    payee_id = require_caller(payee_id)
    payee = await _linked_payee(db, payee_id)
    return await call_processor("Dashboard link creation failed", processor.create_login_link, payee.account_id)
