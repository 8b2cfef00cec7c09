from functools import lru_cache

from session_billing.config import settings
from session_billing.providers.base import PaymentProcessor


@lru_cache(maxsize=1)
def get_processor() -> PaymentProcessor:
    """Return the process-wide processor selected by ``settings.processor_backend``."""
    if settings.processor_backend == "stripe":
        from session_billing.providers.stripe_provider import StripePaymentProcessor

        return StripePaymentProcessor()
    if settings.processor_backend == "mock":
        from session_billing.providers.mock_provider import MockPaymentProcessor

        return MockPaymentProcessor()
    raise ValueError(f"Unknown processor backend: {settings.processor_backend}")


__all__ = ["PaymentProcessor", "get_processor"]
