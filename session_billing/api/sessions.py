"""
Session endpoints.

POST /sessions                 — Book a session (caller is the speaker).
GET  /sessions/{id}            — Session details for a participant.
POST /sessions/{id}/start      — Mark the session active.
POST /sessions/{id}/complete   — Close the session with a termination reason.
POST /sessions/{id}/hold       — Authorize the hold on the speaker's card.
POST /sessions/{id}/capture    — Capture the billable share of the hold.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.api.deps import ApiModel, get_caller, get_payment_processor
from session_billing.database import get_db
from session_billing.engine import capture, holds, sessions
from session_billing.providers import PaymentProcessor

router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(ApiModel):
    companion_id: Optional[str] = None
    duration_minutes: Optional[int] = None
    price: Optional[int] = None
    price_per_minute: Optional[int] = None
    currency: Optional[str] = None


class CompleteSessionRequest(ApiModel):
    termination_reason: Optional[str] = None


class SessionDetail(ApiModel):
    id: str
    speaker_id: str
    companion_id: str
    offer_id: Optional[str] = None
    status: str
    price: Optional[int] = None
    price_per_minute: Optional[int] = None
    duration_minutes: int
    currency: str
    payment_intent_id: Optional[str] = None
    payment_intent_status: Optional[str] = None
    hold_amount: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    termination_reason: Optional[str] = None
    actual_minutes: Optional[int] = None
    billing_minutes: Optional[int] = None
    payment_captured: bool = False
    amount_captured: Optional[int] = None
    created_at: Optional[datetime] = None


class HoldResponse(ApiModel):
    payment_intent_id: str
    status: Optional[str]
    amount: Optional[int]
    currency: str
    session_id: Optional[str] = None
    offer_id: Optional[str] = None
    already_authorized: bool = False


class CaptureResponse(ApiModel):
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


@router.post("", response_model=SessionDetail, status_code=status.HTTP_201_CREATED)
async def create_session(
    body: CreateSessionRequest,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    session = await sessions.create_session(
        db,
        caller,
        companion_id=body.companion_id,
        duration_minutes=body.duration_minutes,
        price=body.price,
        price_per_minute=body.price_per_minute,
        currency=body.currency,
    )
    return SessionDetail.model_validate(session)


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str, caller: str = Depends(get_caller), db: AsyncSession = Depends(get_db)):
    session = await sessions.get_session_for(db, caller, session_id)
    return SessionDetail.model_validate(session)


@router.post("/{session_id}/start", response_model=SessionDetail)
async def start_session(session_id: str, caller: str = Depends(get_caller), db: AsyncSession = Depends(get_db)):
    session = await sessions.start_session(db, caller, session_id)
    return SessionDetail.model_validate(session)


@router.post("/{session_id}/complete", response_model=SessionDetail)
async def complete_session(
    session_id: str,
    body: CompleteSessionRequest,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    session = await sessions.complete_session(db, caller, session_id, body.termination_reason)
    return SessionDetail.model_validate(session)


@router.post("/{session_id}/hold", response_model=HoldResponse)
async def authorize_hold(
    session_id: str,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    result = await holds.authorize_session_hold(db, processor, caller, session_id)
    return HoldResponse.model_validate(result)


@router.post("/{session_id}/capture", response_model=CaptureResponse)
async def capture_payment(
    session_id: str,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """
    Capture the billable share of a completed session's hold.

    Idempotent: both participants may call it, any number of times, and
    every call returns the same recorded outcome.
    """
    result = await capture.capture_session(db, processor, caller, session_id)
    return CaptureResponse.model_validate(result)
