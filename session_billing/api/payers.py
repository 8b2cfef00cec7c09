"""
Speaker card endpoints.

POST   /payers/me/setup                 — Start saving a card (ephemeral key + setup intent).
POST   /payers/me/setup/finalize        — Make the confirmed card the default.
DELETE /payers/me/default-instrument    — Forget the default card.
GET    /payers/me                       — Saved card summary.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.api.deps import ApiModel, get_caller, get_payment_processor
from session_billing.database import get_db
from session_billing.engine import vault
from session_billing.models.records import Payer
from session_billing.providers import PaymentProcessor

router = APIRouter(prefix="/payers", tags=["payers"])


class SetupResponse(ApiModel):
    customer_id: str
    ephemeral_key_secret: str
    setup_intent_id: str
    setup_intent_client_secret: str
    publishable_key: Optional[str] = None


class FinalizeRequest(ApiModel):
    setup_intent_id: Optional[str] = None


class InstrumentResponse(ApiModel):
    payment_method_id: Optional[str]
    brand: Optional[str]
    last4: Optional[str]


class RemoveResponse(ApiModel):
    removed: bool
    payment_method_id: Optional[str] = None


class PayerResponse(ApiModel):
    id: str
    customer_id: Optional[str] = None
    default_payment_method_id: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None


@router.post("/me/setup", response_model=SetupResponse)
async def begin_setup(
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    handle = await vault.begin_instrument_registration(db, processor, caller)
    return SetupResponse.model_validate(handle)


@router.post("/me/setup/finalize", response_model=InstrumentResponse)
async def finalize_setup(
    body: FinalizeRequest,
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    summary = await vault.finalize_instrument_registration(db, processor, caller, body.setup_intent_id)
    return InstrumentResponse.model_validate(summary)


@router.delete("/me/default-instrument", response_model=RemoveResponse)
async def remove_default_instrument(
    caller: str = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    removed = await vault.remove_default_instrument(db, processor, caller)
    return RemoveResponse(removed=removed is not None, payment_method_id=removed)


@router.get("/me", response_model=PayerResponse)
async def get_me(caller: str = Depends(get_caller), db: AsyncSession = Depends(get_db)):
    payer = await db.get(Payer, caller)
    if payer is None:
        return PayerResponse(id=caller)
    return PayerResponse.model_validate(payer)
