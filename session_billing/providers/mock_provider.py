"""
Mock payment processor for local runs and tests.

Keeps customers, setup intents, payment intents and payout accounts in
memory and follows the processor's rules closely enough for the engine:
  - Idempotency keys return the original object
  - Holds land in ``requires_capture``; capture moves them to ``succeeded``
  - Capturing a non-capturable intent fails with the processor's
    "unexpected state" message
  - Optional simulated latency and card declines

Test hooks let a test play the mobile client (``confirm_setup_intent``),
the processor dashboard (``set_intent_status``, ``complete_onboarding``)
or a concurrent caller (``race_next_capture``).
"""

import asyncio
import random
import time
import uuid
from collections import defaultdict
from typing import Optional

from session_billing.config import settings
from session_billing.errors import ProcessorError
from session_billing.models.enums import IntentStatus
from session_billing.providers.base import (
    CardDetails,
    EphemeralKey,
    PaymentIntent,
    PaymentProcessor,
    PayoutAccount,
    RedirectLink,
    SetupIntent,
)


def _mock_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class MockPaymentProcessor(PaymentProcessor):
    """In-memory processor with Stripe-like behavior."""

    def __init__(
        self,
        decline_rate: Optional[float] = None,
        latency_ms: Optional[int] = None,
    ):
        self._decline_rate = decline_rate if decline_rate is not None else settings.mock_decline_rate
        self._latency_ms = latency_ms if latency_ms is not None else settings.mock_latency_ms

        self.customers: dict[str, dict] = {}
        self.setup_intents: dict[str, SetupIntent] = {}
        self.payment_methods: dict[str, CardDetails] = {}
        self.attached: dict[str, str] = {}  # payment_method_id -> customer_id
        self.payment_intents: dict[str, PaymentIntent] = {}
        self.accounts: dict[str, PayoutAccount] = {}
        self.onboarding_requests: list[tuple[str, str, str]] = []  # (account_id, return_url, refresh_url)

        self._idempotent: dict[str, object] = {}
        self._failures: dict[str, list[ProcessorError]] = defaultdict(list)
        self._racing_captures: set[str] = set()
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def publishable_key(self) -> Optional[str]:
        return "pk_test_mock"

    # Test hooks

    def fail_next(self, operation: str, message: str, code: Optional[str] = None) -> None:
        """Make the next call to ``operation`` raise a ProcessorError."""
        self._failures[operation].append(ProcessorError(message, code=code))

    def confirm_setup_intent(self, setup_intent_id: str, brand: str = "visa", last4: str = "4242") -> str:
        """Attach a new card to a setup intent, as the mobile SDK would."""
        intent = self.setup_intents[setup_intent_id]
        pm = CardDetails(id=_mock_id("pm"), brand=brand, last4=last4)
        self.payment_methods[pm.id] = pm
        if intent.customer_id:
            self.attached[pm.id] = intent.customer_id
        intent.payment_method_id = pm.id
        intent.status = "succeeded"
        return pm.id

    def set_intent_status(self, payment_intent_id: str, status: IntentStatus) -> None:
        intent = self.payment_intents[payment_intent_id]
        intent.status = status.value
        if status != IntentStatus.REQUIRES_CAPTURE:
            intent.amount_capturable = 0

    def race_next_capture(self, payment_intent_id: str, amount: Optional[int] = None) -> None:
        """Capture ``payment_intent_id`` on behalf of another caller right before the next capture call."""
        self._racing_captures.add(payment_intent_id)
        if amount is not None:
            self.payment_intents[payment_intent_id].metadata["race_amount"] = amount

    def complete_onboarding(self, account_id: str) -> None:
        account = self.accounts[account_id]
        account.details_submitted = True
        account.payouts_enabled = True
        account.charges_enabled = True

    # Internals

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if self._latency_ms > 0:
            jitter = random.uniform(0.5, 1.5)
            await asyncio.sleep(self._latency_ms * jitter / 1000)
        if self._failures[operation]:
            raise self._failures[operation].pop(0)

    def _replay(self, key: Optional[str]):
        return self._idempotent.get(key) if key else None

    def _remember(self, key: Optional[str], value) -> None:
        if key:
            self._idempotent[key] = value

    def _intent(self, payment_intent_id: str) -> PaymentIntent:
        intent = self.payment_intents.get(payment_intent_id)
        if intent is None:
            raise ProcessorError(
                f"No such payment_intent: '{payment_intent_id}'",
                code="resource_missing",
                status_code=404,
            )
        return intent

    def _account(self, account_id: str) -> PayoutAccount:
        account = self.accounts.get(account_id)
        if account is None:
            raise ProcessorError(f"No such account: '{account_id}'", code="resource_missing", status_code=404)
        return account

    @staticmethod
    def _unexpected_state(intent: PaymentIntent) -> ProcessorError:
        return ProcessorError(
            f"This PaymentIntent could not be captured because it has a status of {intent.status}. "
            "Only a PaymentIntent with one of the following statuses may be acted upon: requires_capture.",
            code="payment_intent_unexpected_state",
        )

    # Customers and saved cards

    async def create_customer(self, payer_id: str, idempotency_key: Optional[str] = None) -> str:
        await self._enter("create_customer")
        replayed = self._replay(idempotency_key)
        if replayed:
            return replayed
        customer_id = _mock_id("cus")
        self.customers[customer_id] = {"payer_id": payer_id, "default_payment_method": None}
        self._remember(idempotency_key, customer_id)
        return customer_id

    async def create_ephemeral_key(self, customer_id: str) -> EphemeralKey:
        await self._enter("create_ephemeral_key")
        if customer_id not in self.customers:
            raise ProcessorError(f"No such customer: '{customer_id}'", code="resource_missing", status_code=404)
        return EphemeralKey(secret=_mock_id("ek_test"), expires_at=int(time.time()) + 3600)

    async def create_setup_intent(self, customer_id: str) -> SetupIntent:
        await self._enter("create_setup_intent")
        seti_id = _mock_id("seti")
        intent = SetupIntent(
            id=seti_id,
            client_secret=f"{seti_id}_secret_{uuid.uuid4().hex[:8]}",
            customer_id=customer_id,
            status="requires_payment_method",
        )
        self.setup_intents[seti_id] = intent
        return intent

    async def retrieve_setup_intent(self, setup_intent_id: str) -> SetupIntent:
        await self._enter("retrieve_setup_intent")
        intent = self.setup_intents.get(setup_intent_id)
        if intent is None:
            raise ProcessorError(f"No such setupintent: '{setup_intent_id}'", code="resource_missing", status_code=404)
        return intent

    async def retrieve_payment_method(self, payment_method_id: str) -> CardDetails:
        await self._enter("retrieve_payment_method")
        pm = self.payment_methods.get(payment_method_id)
        if pm is None:
            raise ProcessorError(
                f"No such PaymentMethod: '{payment_method_id}'", code="resource_missing", status_code=404
            )
        return pm

    async def set_default_payment_method(self, customer_id: str, payment_method_id: Optional[str]) -> None:
        await self._enter("set_default_payment_method")
        if customer_id not in self.customers:
            raise ProcessorError(f"No such customer: '{customer_id}'", code="resource_missing", status_code=404)
        self.customers[customer_id]["default_payment_method"] = payment_method_id

    async def detach_payment_method(self, payment_method_id: str) -> None:
        await self._enter("detach_payment_method")
        if payment_method_id not in self.attached:
            raise ProcessorError(
                "The payment method you provided is not attached to a customer so detachment is impossible.",
                code="payment_method_unexpected_state",
            )
        del self.attached[payment_method_id]

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
        await self._enter("create_hold")
        replayed = self._replay(idempotency_key)
        if replayed:
            return replayed

        if self.attached.get(payment_method_id) != customer_id:
            raise ProcessorError(
                f"The provided PaymentMethod {payment_method_id} was previously used without being attached "
                "to a Customer or was detached from a Customer, and may not be used again.",
                code="payment_method_unexpected_state",
            )
        if self._decline_rate and random.random() < self._decline_rate:
            raise ProcessorError("Your card was declined.", code="card_declined", status_code=402)

        intent = PaymentIntent(
            id=_mock_id("pi"),
            status=IntentStatus.REQUIRES_CAPTURE.value,
            amount=amount,
            currency=currency,
            amount_capturable=amount,
            customer_id=customer_id,
            metadata=dict(metadata),
        )
        self.payment_intents[intent.id] = intent
        self._remember(idempotency_key, intent)
        return intent

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        await self._enter("retrieve_payment_intent")
        return self._intent(payment_intent_id)

    async def capture_payment_intent(
        self,
        payment_intent_id: str,
        amount_to_capture: int,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        await self._enter("capture_payment_intent")
        replayed = self._replay(idempotency_key)
        if replayed:
            return replayed

        intent = self._intent(payment_intent_id)
        if payment_intent_id in self._racing_captures:
            self._racing_captures.discard(payment_intent_id)
            self._settle(intent, intent.metadata.pop("race_amount", amount_to_capture))

        if intent.status != IntentStatus.REQUIRES_CAPTURE.value:
            raise self._unexpected_state(intent)
        if amount_to_capture > intent.amount_capturable:
            raise ProcessorError(
                "The amount_to_capture must be less than or equal to the amount_capturable.",
                code="amount_too_large",
            )
        self._settle(intent, amount_to_capture)
        self._remember(idempotency_key, intent)
        return intent

    @staticmethod
    def _settle(intent: PaymentIntent, amount: int) -> None:
        intent.status = IntentStatus.SUCCEEDED.value
        intent.amount_received = amount
        intent.amount_capturable = 0

    # Payout accounts

    async def create_payout_account(self, payee_id: str, country: str, idempotency_key: Optional[str] = None) -> PayoutAccount:
        await self._enter("create_payout_account")
        replayed = self._replay(idempotency_key)
        if replayed:
            return replayed
        account = PayoutAccount(id=_mock_id("acct"))
        self.accounts[account.id] = account
        self._remember(idempotency_key, account)
        return account

    async def retrieve_payout_account(self, account_id: str) -> PayoutAccount:
        await self._enter("retrieve_payout_account")
        return self._account(account_id)

    async def create_onboarding_link(self, account_id: str, return_url: str, refresh_url: str) -> RedirectLink:
        await self._enter("create_onboarding_link")
        self._account(account_id)
        self.onboarding_requests.append((account_id, return_url, refresh_url))
        return RedirectLink(
            url=f"https://connect.mock.test/setup/{account_id}/{uuid.uuid4().hex[:12]}",
            expires_at=int(time.time()) + 300,
        )

    async def create_login_link(self, account_id: str) -> RedirectLink:
        await self._enter("create_login_link")
        self._account(account_id)
        return RedirectLink(url=f"https://connect.mock.test/express/{account_id}/{uuid.uuid4().hex[:12]}")
