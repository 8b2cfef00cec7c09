"""
Abstract payment processor interface.

The engine only talks to the processor through this interface. The Stripe
adapter wraps the real API; the mock keeps everything in memory with the
same semantics so the engine can be exercised without network access.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class EphemeralKey:
    """Short-lived credential the mobile client uses to talk to the processor."""

    secret: str
    expires_at: Optional[int] = None


@dataclass
class SetupIntent:
    """Handle for saving a card without charging it."""

    id: str
    client_secret: str
    customer_id: Optional[str]
    status: str
    payment_method_id: Optional[str] = None


@dataclass
class CardDetails:
    """Display metadata of a saved payment method."""

    id: str
    brand: Optional[str] = None
    last4: Optional[str] = None


@dataclass
class PaymentIntent:
    """Processor view of a hold or charge."""

    id: str
    status: str  # see IntentStatus
    amount: int  # held/requested amount, minor units
    currency: str
    amount_received: int = 0
    amount_capturable: int = 0
    customer_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class PayoutAccount:
    """Connected account that receives payouts."""

    id: str
    details_submitted: bool = False
    payouts_enabled: bool = False
    charges_enabled: bool = False


@dataclass
class RedirectLink:
    """Single-use URL for onboarding or the account dashboard."""

    url: str
    expires_at: Optional[int] = None


class PaymentProcessor(ABC):
    """
    Abstract base class for payment processors.

    Every method raises ``ProcessorError`` when the processor rejects the
    call. Calls that create money movements accept an ``idempotency_key``;
    repeating a call with the same key returns the original result.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Processor identifier (e.g. 'stripe')."""
        ...

    @property
    def publishable_key(self) -> Optional[str]:
        return None

    # Customers and saved cards

    @abstractmethod
    async def create_customer(self, payer_id: str, idempotency_key: Optional[str] = None) -> str:
        """Create a customer for the payer and return its id."""
        ...

    @abstractmethod
    async def create_ephemeral_key(self, customer_id: str) -> EphemeralKey:
        ...

    @abstractmethod
    async def create_setup_intent(self, customer_id: str) -> SetupIntent:
        ...

    @abstractmethod
    async def retrieve_setup_intent(self, setup_intent_id: str) -> SetupIntent:
        ...

    @abstractmethod
    async def retrieve_payment_method(self, payment_method_id: str) -> CardDetails:
        ...

    @abstractmethod
    async def set_default_payment_method(self, customer_id: str, payment_method_id: Optional[str]) -> None:
        """Set (or clear, with None) the customer's default payment method."""
        ...

    @abstractmethod
    async def detach_payment_method(self, payment_method_id: str) -> None:
        ...

    # Holds and captures

    @abstractmethod
    async def create_hold(
        self,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        metadata: dict,
        idempotency_key: str,
    ) -> PaymentIntent:
        """
        Create and confirm a manual-capture payment intent off-session.

        A successful authorization leaves the intent in ``requires_capture``.
        """
        ...

    @abstractmethod
    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        ...

    @abstractmethod
    async def capture_payment_intent(
        self,
        payment_intent_id: str,
        amount_to_capture: int,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        ...

    # Payout accounts

    @abstractmethod
    async def create_payout_account(self, payee_id: str, country: str, idempotency_key: Optional[str] = None) -> PayoutAccount:
        ...

    @abstractmethod
    async def retrieve_payout_account(self, account_id: str) -> PayoutAccount:
        ...

    @abstractmethod
    async def create_onboarding_link(self, account_id: str, return_url: str, refresh_url: str) -> RedirectLink:
        ...

    @abstractmethod
    async def create_login_link(self, account_id: str) -> RedirectLink:
        ...
