"""
Payment-method vault: saving the speaker's card for later holds.

Registration is two-step. ``begin_instrument_registration`` hands the
mobile client an ephemeral key and a setup intent; the client collects and
confirms the card against the processor directly; then
``finalize_instrument_registration`` makes the confirmed card the default.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.audit.logger import log_event
from session_billing.engine.guards import call_processor, get_or_create, require_caller
from session_billing.errors import FailedPrecondition, InvalidArgument, PermissionDenied, ProcessorError
from session_billing.models.records import Payer
from session_billing.providers.base import PaymentProcessor

logger = logging.getLogger("session_billing.vault")

SETUP_INTENT_ID = re.compile(r"^seti_[A-Za-z0-9]+$")

# Detach errors that mean the card is already gone on the processor side.
_ALREADY_DETACHED_CODES = {"resource_missing", "payment_method_unexpected_state"}


@dataclass
class RegistrationHandle:
    customer_id: str
    ephemeral_key_secret: str
    setup_intent_id: str
    setup_intent_client_secret: str
    publishable_key: Optional[str] = None


@dataclass
class InstrumentSummary:
    payment_method_id: Optional[str]
    brand: Optional[str]
    last4: Optional[str]


async def ensure_customer(db: AsyncSession, processor: PaymentProcessor, payer: Payer) -> str:
    """Create the processor customer for ``payer`` if it has none yet."""
    if payer.customer_id:
        return payer.customer_id

    customer_id = await call_processor(
        "Customer creation failed",
        processor.create_customer,
        payer.id,
        idempotency_key=f"payer:{payer.id}:customer",
    )
    payer.customer_id = customer_id
    await log_event(db, "customer_created", actor_id=payer.id, details={"customer_id": customer_id})
    return customer_id


async def begin_instrument_registration(
    db: AsyncSession,
    processor: PaymentProcessor,
    payer_id: Optional[str],
) -> RegistrationHandle:
    """
    Start saving a card for the caller.

    Returns the customer id, an ephemeral key and a setup intent the client
    confirms with the processor SDK.
    """
    payer_id = require_caller(payer_id)
    payer = await get_or_create(db, Payer, payer_id)
    customer_id = await ensure_customer(db, processor, payer)
    await db.commit()

    key = await call_processor("Ephemeral key creation failed", processor.create_ephemeral_key, customer_id)
    setup = await call_processor("Setup intent creation failed", processor.create_setup_intent, customer_id)

    logger.info("Payer %s: setup intent %s issued", payer_id, setup.id)
    return RegistrationHandle(
        customer_id=customer_id,
        ephemeral_key_secret=key.secret,
        setup_intent_id=setup.id,
        setup_intent_client_secret=setup.client_secret,
        publishable_key=processor.publishable_key,
    )


async def finalize_instrument_registration(
    db: AsyncSession,
    processor: PaymentProcessor,
    payer_id: Optional[str],
    setup_intent_id: Optional[str],
) -> InstrumentSummary:
    """
    Make the card confirmed on ``setup_intent_id`` the caller's default.

    Raises:
        InvalidArgument: Missing or malformed setup intent id.
        FailedPrecondition: No customer yet, or no card on the setup intent.
        PermissionDenied: The setup intent belongs to another customer.
    """
    payer_id = require_caller(payer_id)
    setup_intent_id = (setup_intent_id or "").strip()
    if not setup_intent_id:
        raise InvalidArgument("setupIntentId is required.")
    if not SETUP_INTENT_ID.match(setup_intent_id):
        raise InvalidArgument(f"Malformed setup intent id: {setup_intent_id}")

    payer = await db.get(Payer, payer_id)
    if payer is None or not payer.customer_id:
        raise FailedPrecondition("No customer on file. Start card registration first.")

    setup = await call_processor("Setup intent lookup failed", processor.retrieve_setup_intent, setup_intent_id)
    if setup.customer_id and setup.customer_id != payer.customer_id:
        raise PermissionDenied("Setup intent belongs to a different customer.")
    if not setup.payment_method_id:
        raise FailedPrecondition("Setup intent has no payment method attached.")

    card = await call_processor(
        "Payment method lookup failed", processor.retrieve_payment_method, setup.payment_method_id
    )
    await call_processor(
        "Setting default payment method failed",
        processor.set_default_payment_method,
        payer.customer_id,
        card.id,
    )

    payer.default_payment_method_id = card.id
    payer.card_brand = card.brand
    payer.card_last4 = card.last4
    await log_event(db, "instrument_saved", actor_id=payer_id, details={
        "payment_method_id": card.id,
        "brand": card.brand,
        "last4": card.last4,
    })
    await db.commit()

    return InstrumentSummary(payment_method_id=card.id, brand=card.brand, last4=card.last4)


async def remove_default_instrument(
    db: AsyncSession,
    processor: PaymentProcessor,
    payer_id: Optional[str],
) -> Optional[str]:
    """
    Forget the caller's default card on the processor and locally.

    Returns the removed payment method id, or None when nothing was saved.
    """
    payer_id = require_caller(payer_id)
    payer = await db.get(Payer, payer_id)
    if payer is None or not payer.default_payment_method_id:
        return None

    payment_method_id = payer.default_payment_method_id
    if payer.customer_id:
        await call_processor(
            "Clearing default payment method failed",
            processor.set_default_payment_method,
            payer.customer_id,
            None,
        )
    try:
        await processor.detach_payment_method(payment_method_id)
    except ProcessorError as e:
        if e.code not in _ALREADY_DETACHED_CODES:
            raise FailedPrecondition(f"Removing payment method failed: {e.message}") from e
        logger.info("Payment method %s already detached: %s", payment_method_id, e.message)

    payer.default_payment_method_id = None
    payer.card_brand = None
    payer.card_last4 = None
    await log_event(db, "instrument_removed", actor_id=payer_id, details={"payment_method_id": payment_method_id})
    await db.commit()
    return payment_method_id
