"""
Session and offer lifecycle.

These operations create the records the payment flow works on and move
them through their states. Completion records the billing fields once,
using the same resolver the capture engine uses.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.audit.logger import log_event
from session_billing.config import settings
from session_billing.engine.billing import elapsed_minutes, resolve_billing_minutes, resolve_committed_amount
from session_billing.engine.guards import get_record, require_caller
from session_billing.errors import FailedPrecondition, InvalidArgument, PermissionDenied
from session_billing.models.enums import OfferStatus, SessionStatus, TerminationReason
from session_billing.models.records import CallSession, Offer

logger = logging.getLogger("session_billing.sessions")


def _validate_terms(
    caller_id: str,
    companion_id: Optional[str],
    duration_minutes: Optional[int],
    flat_amount: Optional[int],
    price_per_minute: Optional[int],
) -> None:
    if not companion_id or not companion_id.strip():
        raise InvalidArgument("companionId is required.")
    if companion_id == caller_id:
        raise InvalidArgument("Speaker and companion must be different users.")
    if duration_minutes is None or duration_minutes <= 0:
        raise InvalidArgument("durationMinutes must be a positive integer.")
    if flat_amount is not None and flat_amount < 0:
        raise InvalidArgument("Amount cannot be negative.")
    if price_per_minute is not None and price_per_minute < 0:
        raise InvalidArgument("pricePerMinute cannot be negative.")
    if resolve_committed_amount(flat_amount, duration_minutes, price_per_minute) is None:
        raise InvalidArgument("A positive amount or per-minute price is required.")


def _currency(value: Optional[str]) -> str:
    currency = (value or settings.default_currency).strip().lower()
    if len(currency) != 3 or not currency.isalpha():
        raise InvalidArgument(f"Invalid currency: {value}")
    return currency


async def create_session(
    db: AsyncSession,
    caller_id: Optional[str],
    companion_id: Optional[str],
    duration_minutes: Optional[int],
    price: Optional[int] = None,
    price_per_minute: Optional[int] = None,
    currency: Optional[str] = None,
) -> CallSession:
    """Book a session with the caller as speaker."""
    caller_id = require_caller(caller_id)
    _validate_terms(caller_id, companion_id, duration_minutes, price, price_per_minute)

    session = CallSession(
        speaker_id=caller_id,
        companion_id=companion_id.strip(),
        status=SessionStatus.SCHEDULED.value,
        price=price,
        price_per_minute=price_per_minute,
        duration_minutes=duration_minutes,
        currency=_currency(currency),
    )
    db.add(session)
    await db.flush()
    await log_event(db, "session_created", actor_id=caller_id, session_id=session.id, details={
        "companion_id": session.companion_id,
        "duration_minutes": duration_minutes,
        "price": price,
        "price_per_minute": price_per_minute,
    })
    await db.commit()
    return session


async def get_session_for(db: AsyncSession, caller_id: Optional[str], session_id: str) -> CallSession:
    caller_id = require_caller(caller_id)
    session = await get_record(db, CallSession, session_id, "Session")
    if caller_id not in (session.speaker_id, session.companion_id):
        raise PermissionDenied("Only session participants can view it.")
    return session


async def start_session(db: AsyncSession, caller_id: Optional[str], session_id: str) -> CallSession:
    session = await get_session_for(db, caller_id, session_id)
    status = SessionStatus(session.status)
    match status:
        case SessionStatus.ACTIVE:
            return session
        case SessionStatus.SCHEDULED:
            pass
        case SessionStatus.COMPLETED | SessionStatus.CANCELED:
            raise FailedPrecondition(f"Session is {status.value}; it cannot be started.")

    await db.execute(
        update(CallSession)
        .where(CallSession.id == session.id, CallSession.status == SessionStatus.SCHEDULED.value)
        .values(status=SessionStatus.ACTIVE.value, started_at=datetime.now(timezone.utc))
    )
    await db.commit()
    await db.refresh(session)
    return session


async def complete_session(
    db: AsyncSession,
    caller_id: Optional[str],
    session_id: str,
    termination_reason: Optional[str],
) -> CallSession:
    """
    Close a session and record its billing fields.

    ``by_speaker`` may only be claimed by the speaker and ``by_companion``
    only by the companion; either participant may report a timeout.
    Completing an already completed session returns it unchanged.
    """
    session = await get_session_for(db, caller_id, session_id)
    caller_id = require_caller(caller_id)

    try:
        reason = TerminationReason(termination_reason)
    except ValueError:
        raise InvalidArgument(f"Invalid termination reason: {termination_reason}") from None

    status = SessionStatus(session.status)
    match status:
        case SessionStatus.COMPLETED:
            return session
        case SessionStatus.CANCELED:
            raise FailedPrecondition("Session was canceled.")
        case SessionStatus.SCHEDULED | SessionStatus.ACTIVE:
            pass

    if reason == TerminationReason.BY_SPEAKER and caller_id != session.speaker_id:
        raise PermissionDenied("Only the speaker can end a session as by_speaker.")
    if reason == TerminationReason.BY_COMPANION and caller_id != session.companion_id:
        raise PermissionDenied("Only the companion can end a session as by_companion.")

    completed_at = datetime.now(timezone.utc)
    actual = elapsed_minutes(session.created_at, completed_at)
    breakdown = resolve_billing_minutes(
        duration_minutes=session.duration_minutes,
        termination_reason=reason,
        actual_minutes=actual,
        payee_minimum_minutes=settings.payee_minimum_minutes,
    )

    result = await db.execute(
        update(CallSession)
        .where(
            CallSession.id == session.id,
            CallSession.status.in_([SessionStatus.SCHEDULED.value, SessionStatus.ACTIVE.value]),
        )
        .values(
            status=SessionStatus.COMPLETED.value,
            completed_at=completed_at,
            ended_by=caller_id,
            termination_reason=reason.value,
            actual_minutes=breakdown.actual_minutes,
            billing_minutes=breakdown.billing_minutes,
        )
    )
    if result.rowcount:
        await log_event(db, "session_completed", actor_id=caller_id, session_id=session.id, details={
            "termination_reason": reason.value,
            "actual_minutes": breakdown.actual_minutes,
            "billing_minutes": breakdown.billing_minutes,
        })
    await db.commit()
    await db.refresh(session)
    return session


async def create_offer(
    db: AsyncSession,
    caller_id: Optional[str],
    companion_id: Optional[str],
    duration_minutes: Optional[int],
    amount: Optional[int] = None,
    price_per_minute: Optional[int] = None,
    currency: Optional[str] = None,
) -> Offer:
    """Propose a session to a companion; the caller is the speaker."""
    caller_id = require_caller(caller_id)
    _validate_terms(caller_id, companion_id, duration_minutes, amount, price_per_minute)

    offer = Offer(
        speaker_id=caller_id,
        companion_id=companion_id.strip(),
        status=OfferStatus.PENDING_REVIEW.value,
        amount=amount,
        price_per_minute=price_per_minute,
        duration_minutes=duration_minutes,
        currency=_currency(currency),
    )
    db.add(offer)
    await db.flush()
    await log_event(db, "offer_created", actor_id=caller_id, offer_id=offer.id, details={
        "companion_id": offer.companion_id,
        "duration_minutes": duration_minutes,
        "amount": amount,
        "price_per_minute": price_per_minute,
    })
    await db.commit()
    return offer


async def get_offer_for(db: AsyncSession, caller_id: Optional[str], offer_id: str) -> Offer:
    caller_id = require_caller(caller_id)
    offer = await get_record(db, Offer, offer_id, "Offer")
    if caller_id not in (offer.speaker_id, offer.companion_id):
        raise PermissionDenied("Only the offer's participants can view it.")
    return offer


async def respond_to_offer(
    db: AsyncSession,
    caller_id: Optional[str],
    offer_id: str,
    accept: bool,
) -> Offer:
    """Companion accepts or declines a pending offer. Repeating the same answer is a no-op."""
    offer = await get_offer_for(db, caller_id, offer_id)
    caller_id = require_caller(caller_id)
    if offer.companion_id != caller_id:
        raise PermissionDenied("Only the offer's companion can respond to it.")

    target = OfferStatus.ACCEPTED if accept else OfferStatus.DECLINED
    status = OfferStatus(offer.status)
    if status == target:
        return offer
    if status != OfferStatus.PENDING_REVIEW:
        raise FailedPrecondition(f"Offer is {status.value}; it can no longer be answered.")

    result = await db.execute(
        update(Offer)
        .where(Offer.id == offer.id, Offer.status == OfferStatus.PENDING_REVIEW.value)
        .values(status=target.value)
    )
    if result.rowcount:
        await log_event(db, f"offer_{target.value}", actor_id=caller_id, offer_id=offer.id)
    await db.commit()
    await db.refresh(offer)
    return offer
