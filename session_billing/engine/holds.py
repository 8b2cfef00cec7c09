"""
Hold authorizer: reserves the committed price on the speaker's saved card.

Two entry points share one algorithm:
  - ``authorize_session_hold`` for a session that already exists
  - ``authorize_offer_hold`` for an accepted offer, which materializes the
    session in the same write

Idempotency:
  - A record that already carries a payment intent returns it unchanged
  - The processor call uses a stable per-record idempotency key, so two
    concurrent callers get the same intent back
  - Hold fields are written with a conditional update; the loser of a race
    rereads and returns the winner's intent

A processor rejection is terminal for the call. Nothing is retried.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.audit.logger import log_event
from session_billing.config import settings
from session_billing.engine.billing import resolve_committed_amount
from session_billing.engine.guards import call_processor, get_or_create, get_record, require_caller
from session_billing.errors import FailedPrecondition, PermissionDenied
from session_billing.models.enums import OfferStatus, SessionStatus
from session_billing.models.records import CallSession, Offer, Payer, new_id
from session_billing.providers.base import PaymentIntent, PaymentProcessor

logger = logging.getLogger("session_billing.holds")


@dataclass
class HoldResult:
    """Outcome of a hold authorization."""

    payment_intent_id: str
    status: Optional[str]
    amount: Optional[int]
    currency: str
    session_id: Optional[str] = None
    offer_id: Optional[str] = None
    already_authorized: bool = False


async def _billable_payer(db: AsyncSession, speaker_id: str) -> Payer:
    payer = await get_or_create(db, Payer, speaker_id)
    if not payer.customer_id or not payer.default_payment_method_id:
        raise FailedPrecondition("Speaker has no saved payment method.")
    return payer


async def _place_hold(
    processor: PaymentProcessor,
    payer: Payer,
    amount: int,
    currency: str,
    metadata: dict,
    idempotency_key: str,
) -> PaymentIntent:
    return await call_processor(
        "Hold authorization failed",
        processor.create_hold,
        customer_id=payer.customer_id,
        payment_method_id=payer.default_payment_method_id,
        amount=amount,
        currency=currency,
        metadata=metadata,
        idempotency_key=idempotency_key,
    )


def _session_hold(session: CallSession, already_authorized: bool) -> HoldResult:
    return HoldResult(
        payment_intent_id=session.payment_intent_id,
        status=session.payment_intent_status,
        amount=session.hold_amount,
        currency=session.currency,
        session_id=session.id,
        offer_id=session.offer_id,
        already_authorized=already_authorized,
    )


def _offer_hold(offer: Offer, already_authorized: bool) -> HoldResult:
    return HoldResult(
        payment_intent_id=offer.payment_intent_id,
        status=offer.payment_intent_status,
        amount=offer.hold_amount,
        currency=offer.currency,
        session_id=offer.session_id,
        offer_id=offer.id,
        already_authorized=already_authorized,
    )


async def authorize_session_hold(
    db: AsyncSession,
    processor: PaymentProcessor,
    caller_id: Optional[str],
    session_id: str,
) -> HoldResult:
    """
    Place a manual-capture hold for a session's committed price.

    Raises:
        NotFound: Unknown session.
        PermissionDenied: Caller is not the session's speaker.
        FailedPrecondition: Session is closed, has no valid price, the
            speaker has no saved card, or the processor declined.
    """
    caller_id = require_caller(caller_id)
    session = await get_record(db, CallSession, session_id, "Session")
    if session.speaker_id != caller_id:
        raise PermissionDenied("Only the session's speaker can authorize its payment.")

    if session.payment_intent_id:
        return _session_hold(session, already_authorized=True)

    status = SessionStatus(session.status)
    match status:
        case SessionStatus.SCHEDULED | SessionStatus.ACTIVE:
            pass
        case SessionStatus.COMPLETED | SessionStatus.CANCELED:
            raise FailedPrecondition(f"Session is {status.value}; a hold can no longer be placed.")

    amount = resolve_committed_amount(session.price, session.duration_minutes, session.price_per_minute)
    if amount is None:
        raise FailedPrecondition("Session has no valid price.")

    payer = await _billable_payer(db, caller_id)
    currency = session.currency or settings.default_currency
    intent = await _place_hold(
        processor,
        payer,
        amount,
        currency,
        metadata={
            "kind": "session_hold",
            "session_id": session.id,
            "speaker_id": session.speaker_id,
            "companion_id": session.companion_id,
        },
        idempotency_key=f"session:{session.id}:hold:{amount}",
    )

    result = await db.execute(
        update(CallSession)
        .where(CallSession.id == session.id, CallSession.payment_intent_id.is_(None))
        .values(
            payment_intent_id=intent.id,
            payment_intent_status=intent.status,
            hold_amount=amount,
            currency=currency,
            hold_created_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        await db.commit()
        await db.refresh(session)
        logger.info("Session %s: hold already recorded by a concurrent call (%s)", session.id, session.payment_intent_id)
        return _session_hold(session, already_authorized=True)

    await log_event(db, "hold_created", actor_id=caller_id, session_id=session.id, details={
        "payment_intent_id": intent.id,
        "status": intent.status,
        "amount": amount,
        "currency": currency,
    })
    await db.commit()
    await db.refresh(session)

    logger.info("Session %s: hold %s placed for %d %s (%s)", session.id, intent.id, amount, currency, intent.status)
    return _session_hold(session, already_authorized=False)


async def authorize_offer_hold(
    db: AsyncSession,
    processor: PaymentProcessor,
    caller_id: Optional[str],
    offer_id: str,
) -> HoldResult:
    """
    Place the hold for an accepted offer and turn it into a session.

    On success the offer becomes ``used`` and points at a new ``scheduled``
    session carrying the hold. Calling again after that returns the same
    session and intent.

    Raises:
        NotFound: Unknown offer.
        PermissionDenied: Caller is not the offer's speaker.
        FailedPrecondition: Offer is not accepted, has no valid amount, the
            speaker has no saved card, or the processor declined.
    """
    caller_id = require_caller(caller_id)
    offer = await get_record(db, Offer, offer_id, "Offer")
    if offer.speaker_id != caller_id:
        raise PermissionDenied("Only the offer's speaker can authorize its payment.")

    status = OfferStatus(offer.status)
    if status == OfferStatus.USED and offer.session_id:
        return _offer_hold(offer, already_authorized=True)
    if offer.payment_intent_id:
        return _offer_hold(offer, already_authorized=True)

    match status:
        case OfferStatus.ACCEPTED:
            pass
        case OfferStatus.PENDING_REVIEW | OfferStatus.USED | OfferStatus.DECLINED | OfferStatus.EXPIRED:
            raise FailedPrecondition(f"Offer is {status.value}; only accepted offers can be paid.")

    amount = resolve_committed_amount(offer.amount, offer.duration_minutes, offer.price_per_minute)
    if amount is None:
        raise FailedPrecondition("Offer has no valid amount.")

    payer = await _billable_payer(db, caller_id)
    currency = offer.currency or settings.default_currency
    intent = await _place_hold(
        processor,
        payer,
        amount,
        currency,
        metadata={
            "kind": "offer_hold",
            "offer_id": offer.id,
            "speaker_id": offer.speaker_id,
            "companion_id": offer.companion_id,
        },
        idempotency_key=f"offer:{offer.id}:hold:{amount}",
    )

    now = datetime.now(timezone.utc)
    session_id = new_id()
    result = await db.execute(
        update(Offer)
        .where(
            Offer.id == offer.id,
            Offer.status == OfferStatus.ACCEPTED.value,
            Offer.payment_intent_id.is_(None),
        )
        .values(
            status=OfferStatus.USED.value,
            payment_intent_id=intent.id,
            payment_intent_status=intent.status,
            hold_amount=amount,
            hold_created_at=now,
            session_id=session_id,
        )
    )
    if result.rowcount == 0:
        await db.commit()
        await db.refresh(offer)
        logger.info("Offer %s: already used by a concurrent call (session %s)", offer.id, offer.session_id)
        return _offer_hold(offer, already_authorized=True)

    db.add(CallSession(
        id=session_id,
        speaker_id=offer.speaker_id,
        companion_id=offer.companion_id,
        offer_id=offer.id,
        status=SessionStatus.SCHEDULED.value,
        price=amount,
        price_per_minute=offer.price_per_minute,
        duration_minutes=offer.duration_minutes,
        currency=currency,
        payment_intent_id=intent.id,
        payment_intent_status=intent.status,
        hold_amount=amount,
        hold_created_at=now,
    ))
    await log_event(db, "hold_created", actor_id=caller_id, offer_id=offer.id, session_id=session_id, details={
        "payment_intent_id": intent.id,
        "status": intent.status,
        "amount": amount,
        "currency": currency,
    })
    await db.commit()
    await db.refresh(offer)

    logger.info("Offer %s: hold %s placed, session %s created", offer.id, intent.id, session_id)
    return _offer_hold(offer, already_authorized=False)
