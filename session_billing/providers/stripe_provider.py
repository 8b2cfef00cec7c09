"""
Stripe adapter.

Wraps the blocking ``stripe`` SDK in worker threads and maps every
``stripe.error.StripeError`` onto ``ProcessorError`` carrying Stripe's
human-readable message, so the engine never sees SDK types.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Optional

import stripe

from session_billing.config import settings
from session_billing.errors import ProcessorError
from session_billing.providers.base import (
    CardDetails,
    EphemeralKey,
    PaymentIntent,
    PaymentProcessor,
    PayoutAccount,
    RedirectLink,
    SetupIntent,
)

logger = logging.getLogger("session_billing.stripe")


def _value(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict payload."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _id_of(obj: Any) -> Optional[str]:
    """Expandable fields come back either as an id string or as an object."""
    if obj is None or isinstance(obj, str):
        return obj
    return _value(obj, "id")


def _to_processor_error(exc: stripe.error.StripeError) -> ProcessorError:
    message = exc.user_message or str(exc) or "Stripe request failed."
    return ProcessorError(message, code=exc.code, status_code=exc.http_status or 400)


class StripePaymentProcessor(PaymentProcessor):
    """Payment processor backed by the Stripe API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        publishable_key: Optional[str] = None,
        api_version: Optional[str] = None,
    ):
        self._api_key = api_key or settings.stripe_secret_key
        if not self._api_key:
            raise ValueError("Stripe secret key not configured.")
        self._publishable_key = publishable_key or settings.stripe_publishable_key
        self._api_version = api_version or settings.stripe_api_version

    @property
    def name(self) -> str:
        return "stripe"

    @property
    def publishable_key(self) -> Optional[str]:
        return self._publishable_key or None

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        kwargs.setdefault("api_key", self._api_key)
        try:
            return await asyncio.to_thread(partial(func, *args, **kwargs))
        except stripe.error.StripeError as exc:
            logger.warning("Stripe %s failed: %s", getattr(func, "__qualname__", func), exc.user_message or exc)
            raise _to_processor_error(exc) from exc

    # Customers and saved cards

    async def create_customer(self, payer_id: str, idempotency_key: Optional[str] = None) -> str:
        customer = await self._call(
            stripe.Customer.create,
            metadata={"uid": payer_id},
            idempotency_key=idempotency_key,
        )
        return customer.id

    async def create_ephemeral_key(self, customer_id: str) -> EphemeralKey:
        key = await self._call(
            stripe.EphemeralKey.create,
            customer=customer_id,
            stripe_version=self._api_version,
        )
        return EphemeralKey(secret=key.secret, expires_at=_value(key, "expires"))

    async def create_setup_intent(self, customer_id: str) -> SetupIntent:
        intent = await self._call(
            stripe.SetupIntent.create,
            customer=customer_id,
            usage="off_session",
            payment_method_types=["card"],
        )
        return self._setup_intent(intent)

    async def retrieve_setup_intent(self, setup_intent_id: str) -> SetupIntent:
        intent = await self._call(stripe.SetupIntent.retrieve, setup_intent_id)
        return self._setup_intent(intent)

    @staticmethod
    def _setup_intent(intent: Any) -> SetupIntent:
        return SetupIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            customer_id=_id_of(_value(intent, "customer")),
            status=intent.status,
            payment_method_id=_id_of(_value(intent, "payment_method")),
        )

    async def retrieve_payment_method(self, payment_method_id: str) -> CardDetails:
        pm = await self._call(stripe.PaymentMethod.retrieve, payment_method_id)
        card = _value(pm, "card")
        return CardDetails(id=pm.id, brand=_value(card, "brand"), last4=_value(card, "last4"))

    async def set_default_payment_method(self, customer_id: str, payment_method_id: Optional[str]) -> None:
        await self._call(
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id or ""},
        )

    async def detach_payment_method(self, payment_method_id: str) -> None:
        await self._call(stripe.PaymentMethod.detach, payment_method_id)

    # Holds and captures

    async def create_hold(
        self,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        metadata: dict,
        idempotency_key: str,
    ) -> PaymentIntent:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            customer=customer_id,
            payment_method=payment_method_id,
            capture_method="manual",
            confirm=True,
            off_session=True,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return self._payment_intent(intent)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        intent = await self._call(stripe.PaymentIntent.retrieve, payment_intent_id)
        return self._payment_intent(intent)

    async def capture_payment_intent(
        self,
        payment_intent_id: str,
        amount_to_capture: int,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        intent = await self._call(
            stripe.PaymentIntent.capture,
            payment_intent_id,
            amount_to_capture=amount_to_capture,
            idempotency_key=idempotency_key,
        )
        return self._payment_intent(intent)

    @staticmethod
    def _payment_intent(intent: Any) -> PaymentIntent:
        metadata = _value(intent, "metadata") or {}
        return PaymentIntent(
            id=intent.id,
            status=intent.status,
            amount=_value(intent, "amount", 0) or 0,
            currency=_value(intent, "currency", ""),
            amount_received=_value(intent, "amount_received", 0) or 0,
            amount_capturable=_value(intent, "amount_capturable", 0) or 0,
            customer_id=_id_of(_value(intent, "customer")),
            metadata=dict(metadata),
        )

    # Payout accounts

    async def create_payout_account(self, payee_id: str, country: str, idempotency_key: Optional[str] = None) -> PayoutAccount:
        account = await self._call(
            stripe.Account.create,
            type="express",
            country=country,
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            metadata={"uid": payee_id},
            idempotency_key=idempotency_key,
        )
        return self._account(account)

    async def retrieve_payout_account(self, account_id: str) -> PayoutAccount:
        account = await self._call(stripe.Account.retrieve, account_id)
        return self._account(account)

    @staticmethod
    def _account(account: Any) -> PayoutAccount:
        return PayoutAccount(
            id=account.id,
            details_submitted=bool(_value(account, "details_submitted", False)),
            payouts_enabled=bool(_value(account, "payouts_enabled", False)),
            charges_enabled=bool(_value(account, "charges_enabled", False)),
        )

    async def create_onboarding_link(self, account_id: str, return_url: str, refresh_url: str) -> RedirectLink:
        link = await self._call(
            stripe.AccountLink.create,
            account=account_id,
            type="account_onboarding",
            refresh_url=refresh_url,
            return_url=return_url,
        )
        return RedirectLink(url=link.url, expires_at=_value(link, "expires_at"))

    async def create_login_link(self, account_id: str) -> RedirectLink:
        link = await self._call(stripe.Account.create_login_link, account_id)
        return RedirectLink(url=link.url)
