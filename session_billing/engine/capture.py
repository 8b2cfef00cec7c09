"""
Proportional capture engine — settles a completed session's hold exactly once.

Flow:
  1. Participant, status and hold checks
  2. Idempotency gate: a recorded capture is returned verbatim
  3. Billable minutes via the shared resolver, amount via pro-rating
  4. Processor state decides what happens next:
       succeeded          → someone already captured; record what was received
       canceled           → terminal failure, nothing written
       requires_capture   → capture the computed amount
       anything else      → terminal failure, nothing written
  5. Outcome written in one conditional update

Both participants may trigger capture at the same moment. The processor
rejects the second capture as "already captured"; that error is absorbed by
rereading the intent and recording its settled amount. The conditional
update then keeps whichever outcome was written first.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.audit.logger import log_event
from session_billing.config import settings
from session_billing.engine.billing import (
    BillingBreakdown,
    compute_capture_amount,
    parse_termination_reason,
    resolve_billing_minutes,
    resolve_committed_amount,
)
from session_billing.engine.guards import call_processor, get_record, require_caller
from session_billing.errors import FailedPrecondition, PermissionDenied, ProcessorError
from session_billing.models.enums import IntentStatus, SessionStatus
from session_billing.models.records import CallSession
from session_billing.providers.base import PaymentIntent, PaymentProcessor

logger = logging.getLogger("session_billing.capture")

_ALREADY_CAPTURED_MARKERS = ("already been captured", "already captured", "status of succeeded")


@dataclass
class CaptureResult:
    """Recorded capture outcome of a session."""

    session_id: str
    payment_intent_id: str
    status: Optional[str]
    amount_captured: Optional[int]
    hold_amount: Optional[int]
    currency: str
    duration_minutes: int
    billing_minutes: Optional[int]
    actual_minutes: Optional[int]
    termination_reason: Optional[str]


def is_already_captured(error: ProcessorError) -> bool:
    """True when a capture failed only because another caller captured first."""
    message = (error.message or "").lower()
    return any(marker in message for marker in _ALREADY_CAPTURED_MARKERS)


def _recorded(session: CallSession) -> CaptureResult:
    return CaptureResult(
        session_id=session.id,
        payment_intent_id=session.payment_intent_id,
        status=session.payment_intent_status,
        amount_captured=session.amount_captured,
        hold_amount=session.hold_amount,
        currency=session.currency,
        duration_minutes=session.duration_minutes,
        billing_minutes=session.capture_billing_minutes,
        actual_minutes=session.capture_actual_minutes,
        termination_reason=session.capture_termination_reason,
    )


async def _capture_or_absorb_race(
    processor: PaymentProcessor,
    session: CallSession,
    amount: int,
) -> PaymentIntent:
    try:
        return await processor.capture_payment_intent(
            session.payment_intent_id,
            amount,
            idempotency_key=f"session:{session.id}:capture:{amount}",
        )
    except ProcessorError as e:
        if not is_already_captured(e):
            logger.warning("Session %s: capture failed: %s", session.id, e.message)
            raise FailedPrecondition(f"Capture failed: {e.message}") from e

    logger.info("Session %s: intent %s captured concurrently, rereading", session.id, session.payment_intent_id)
    intent = await call_processor(
        "Payment lookup failed", processor.retrieve_payment_intent, session.payment_intent_id
    )
    if intent.status != IntentStatus.SUCCEEDED.value:
        raise FailedPrecondition(f"Capture failed: payment is {intent.status} after a concurrent capture.")
    return intent


async def capture_session(
    db: AsyncSession,
    processor: PaymentProcessor,
    caller_id: Optional[str],
    session_id: str,
) -> CaptureResult:
    """
    Capture the billable share of a completed session's hold.

    Safe to call repeatedly and from both participants: every call after the
    first returns the first call's recorded outcome.

    Raises:
        NotFound: Unknown session.
        PermissionDenied: Caller is not a participant.
        FailedPrecondition: Session not completed, no hold, hold canceled or
            in an uncapturable state, or the processor rejected the capture.
    """
    caller_id = require_caller(caller_id)
    session = await get_record(db, CallSession, session_id, "Session")
    if caller_id not in (session.speaker_id, session.companion_id):
        raise PermissionDenied("Only session participants can capture its payment.")

    status = SessionStatus(session.status)
    match status:
        case SessionStatus.COMPLETED:
            pass
        case SessionStatus.SCHEDULED | SessionStatus.ACTIVE | SessionStatus.CANCELED:
            raise FailedPrecondition(f"Session is {status.value}; only completed sessions can be captured.")

    if not session.payment_intent_id:
        raise FailedPrecondition("Session has no payment authorization.")

    if session.payment_captured:
        logger.info("Session %s: capture already recorded, returning it", session.id)
        return _recorded(session)

    hold_amount = session.hold_amount or resolve_committed_amount(
        session.price, session.duration_minutes, session.price_per_minute
    )
    if not hold_amount or not session.duration_minutes or session.duration_minutes <= 0:
        raise FailedPrecondition("Session has no valid hold amount or duration.")

    breakdown: BillingBreakdown = resolve_billing_minutes(
        duration_minutes=session.duration_minutes,
        termination_reason=parse_termination_reason(session.termination_reason),
        recorded_billing_minutes=session.billing_minutes,
        actual_minutes=session.actual_minutes,
        started_at=session.created_at,
        ended_at=session.completed_at,
        payee_minimum_minutes=settings.payee_minimum_minutes,
    )
    amount = compute_capture_amount(hold_amount, breakdown.billing_minutes, session.duration_minutes)

    intent = await call_processor(
        "Payment lookup failed", processor.retrieve_payment_intent, session.payment_intent_id
    )
    intent_status = IntentStatus(intent.status)
    match intent_status:
        case IntentStatus.SUCCEEDED:
            logger.info("Session %s: intent %s already settled", session.id, intent.id)
        case IntentStatus.CANCELED:
            raise FailedPrecondition("Payment authorization was canceled; nothing can be captured.")
        case IntentStatus.REQUIRES_CAPTURE:
            intent = await _capture_or_absorb_race(processor, session, amount)
        case (
            IntentStatus.REQUIRES_PAYMENT_METHOD
            | IntentStatus.REQUIRES_CONFIRMATION
            | IntentStatus.REQUIRES_ACTION
            | IntentStatus.PROCESSING
        ):
            raise FailedPrecondition(f"Payment is {intent_status.value}; it cannot be captured.")

    reason = breakdown.termination_reason.value if breakdown.termination_reason else None
    result = await db.execute(
        update(CallSession)
        .where(CallSession.id == session.id, CallSession.payment_captured.is_(False))
        .values(
            payment_captured=True,
            amount_captured=intent.amount_received,
            payment_intent_status=intent.status,
            captured_at=datetime.now(timezone.utc),
            capture_termination_reason=reason,
            capture_actual_minutes=breakdown.actual_minutes,
            capture_billing_minutes=breakdown.billing_minutes,
            billing_minutes=breakdown.billing_minutes,
        )
    )
    if result.rowcount == 0:
        await db.commit()
        await db.refresh(session)
        logger.info("Session %s: capture recorded by a concurrent call", session.id)
        return _recorded(session)

    await log_event(db, "capture_recorded", actor_id=caller_id, session_id=session.id, details={
        "payment_intent_id": intent.id,
        "status": intent.status,
        "computed_amount": amount,
        "amount_received": intent.amount_received,
        "hold_amount": hold_amount,
        "billing_minutes": breakdown.billing_minutes,
        "actual_minutes": breakdown.actual_minutes,
        "duration_minutes": session.duration_minutes,
        "termination_reason": reason,
        "source": breakdown.source,
    })
    await db.commit()
    await db.refresh(session)

    logger.info(
        "Session %s: captured %d of %d %s (%d/%d min, %s)",
        session.id,
        intent.amount_received,
        hold_amount,
        session.currency,
        breakdown.billing_minutes,
        session.duration_minutes,
        reason or "no reason",
    )
    return _recorded(session)
