"""
Offer endpoints.

POST /offers                — Propose a session (caller is the speaker).
GET  /offers/{id}           — Offer details for a participant.
POST /offers/{id}/respond   — Companion accepts or declines.
POST /offers/{id}/hold      — Speaker pays: hold placed, session created.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.api.deps import ApiModel, get_caller, get_payment_processor
from session_billing.api.sessions import HoldResponse
from session_billing.database import get_db
from session_billing.engine import holds, sessions
from session_billing.errors import InvalidArgument
from session_billing.providers import PaymentProcessor

router = APIRouter(prefix="/offers", tags=["offers"])


class CreateOfferRequest(ApiModel):
    companion_id: Optional[str] = None
    duration_minutes: Optional[int] = None
    amount: Optional[int] = None
    price_per_minute: Optional[int] = None
    currency: Optional[str] = None


class RespondRequest(ApiModel):
    accept: Optional[bool] = None


class OfferDetail(ApiModel):
    id: str
    speaker_id: str
    companion_id: str
    status: str
    amount: Optional[int] = None
    price_per_minute: Optional[int] = None
    duration_minutes: int
    currency: str
    payment_intent_id: Optional[str] = None
    payment_intent_status: Optional[str] = None
    hold_amount: Optional[int] = None
    session_id: Optional[str] = None
    created_at: Optional[datetime] = None


@router.post("", response_model=OfferDetail, status_code=status.HTTP_201_CREATED)
async def create_offer(
    body: CreateOfferRequest,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    offer = await sessions.create_offer(
        db,
        caller,
        companion_id=body.companion_id,
        duration_minutes=body.duration_minutes,
        amount=body.amount,
        price_per_minute=body.price_per_minute,
        currency=body.currency,
    )
    return OfferDetail.model_validate(offer)


@router.get("/{offer_id}", response_model=OfferDetail)
async def get_offer(offer_id: str, caller: str = Depends(get_caller), db: AsyncSession = Depends(get_db)):
    offer = await sessions.get_offer_for(db, caller, offer_id)
    return OfferDetail.model_validate(offer)


@router.post("/{offer_id}/respond", response_model=OfferDetail)
async def respond_to_offer(
    offer_id: str,
    body: RespondRequest,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    if body.accept is None:
        raise InvalidArgument("accept is required.")
    offer = await sessions.respond_to_offer(db, caller, offer_id, body.accept)
    return OfferDetail.model_validate(offer)


@router.post("/{offer_id}/hold", response_model=HoldResponse)
async def authorize_hold(
    offer_id: str,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    result = await holds.authorize_offer_hold(db, processor, caller, offer_id)
    return HoldResponse.model_validate(result)
