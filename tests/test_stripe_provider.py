"""Tests for the Stripe adapter with the SDK patched out."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from session_billing.errors import ProcessorError
from session_billing.providers.stripe_provider import StripePaymentProcessor


@pytest.fixture
def processor():
    return StripePaymentProcessor(api_key="sk_test_123", publishable_key="pk_test_123", api_version="2024-06-20")


def intent_payload(**fields):
    values = {
        "id": "pi_123",
        "status": "requires_capture",
        "amount": 10_000,
        "currency": "usd",
        "amount_received": 0,
        "amount_capturable": 10_000,
        "customer": "cus_123",
        "metadata": {"session_id": "s1"},
    }
    values.update(fields)
    return SimpleNamespace(**values)


def test_requires_secret_key():
    with patch("session_billing.providers.stripe_provider.settings") as settings:
        settings.stripe_secret_key = ""
        with pytest.raises(ValueError):
            StripePaymentProcessor(api_key=None)


@pytest.mark.asyncio
async def test_create_hold_is_manual_capture(processor):
    with patch.object(stripe.PaymentIntent, "create", return_value=intent_payload()) as create:
        intent = await processor.create_hold(
            "cus_123", "pm_123", 10_000, "usd", {"session_id": "s1"}, idempotency_key="session:s1:hold:10000"
        )

    kwargs = create.call_args.kwargs
    assert kwargs["capture_method"] == "manual"
    assert kwargs["confirm"] is True
    assert kwargs["off_session"] is True
    assert kwargs["idempotency_key"] == "session:s1:hold:10000"
    assert kwargs["api_key"] == "sk_test_123"
    assert intent.status == "requires_capture"
    assert intent.amount_capturable == 10_000
    assert intent.metadata == {"session_id": "s1"}


@pytest.mark.asyncio
async def test_capture_maps_settled_amount(processor):
    settled = intent_payload(status="succeeded", amount_received=5000, amount_capturable=0)
    with patch.object(stripe.PaymentIntent, "capture", return_value=settled) as capture:
        intent = await processor.capture_payment_intent("pi_123", 5000, idempotency_key="session:s1:capture:5000")

    assert capture.call_args.args == ("pi_123",)
    assert capture.call_args.kwargs["amount_to_capture"] == 5000
    assert intent.status == "succeeded"
    assert intent.amount_received == 5000


@pytest.mark.asyncio
async def test_sdk_errors_become_processor_errors(processor):
    error = stripe.error.InvalidRequestError(
        "This PaymentIntent could not be captured because it has a status of succeeded.",
        None,
        code="payment_intent_unexpected_state",
        http_status=400,
    )
    with patch.object(stripe.PaymentIntent, "capture", side_effect=error):
        with pytest.raises(ProcessorError) as exc_info:
            await processor.capture_payment_intent("pi_123", 5000)

    assert exc_info.value.code == "payment_intent_unexpected_state"
    assert "status of succeeded" in exc_info.value.message
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_card_error_surfaces_message(processor):
    error = stripe.error.CardError("Your card was declined.", None, "card_declined", http_status=402)
    with patch.object(stripe.PaymentIntent, "create", side_effect=error):
        with pytest.raises(ProcessorError, match="Your card was declined."):
            await processor.create_hold("cus_123", "pm_123", 1000, "usd", {}, idempotency_key="k")


@pytest.mark.asyncio
async def test_setup_intent_with_expanded_fields(processor):
    payload = SimpleNamespace(
        id="seti_123",
        client_secret="seti_123_secret",
        customer=SimpleNamespace(id="cus_123"),
        status="succeeded",
        payment_method=SimpleNamespace(id="pm_123"),
    )
    with patch.object(stripe.SetupIntent, "retrieve", return_value=payload):
        intent = await processor.retrieve_setup_intent("seti_123")

    assert intent.customer_id == "cus_123"
    assert intent.payment_method_id == "pm_123"


@pytest.mark.asyncio
async def test_card_details(processor):
    payload = SimpleNamespace(id="pm_123", card={"brand": "visa", "last4": "4242"})
    with patch.object(stripe.PaymentMethod, "retrieve", return_value=payload):
        card = await processor.retrieve_payment_method("pm_123")

    assert (card.brand, card.last4) == ("visa", "4242")


@pytest.mark.asyncio
async def test_clearing_default_payment_method(processor):
    with patch.object(stripe.Customer, "modify") as modify:
        await processor.set_default_payment_method("cus_123", None)

    assert modify.call_args.kwargs["invoice_settings"] == {"default_payment_method": ""}


@pytest.mark.asyncio
async def test_payout_account_flags(processor):
    payload = SimpleNamespace(id="acct_123", details_submitted=True, payouts_enabled=False, charges_enabled=True)
    with patch.object(stripe.Account, "retrieve", return_value=payload):
        account = await processor.retrieve_payout_account("acct_123")

    assert account.details_submitted is True
    assert account.payouts_enabled is False
    assert account.charges_enabled is True


@pytest.mark.asyncio
async def test_onboarding_link(processor):
    payload = SimpleNamespace(url="https://connect.stripe.com/setup/e/acct_123/abc", expires_at=1_700_000_000)
    with patch.object(stripe.AccountLink, "create", return_value=payload) as create:
        link = await processor.create_onboarding_link("acct_123", "https://a.test/done", "https://a.test/retry")

    assert create.call_args.kwargs["type"] == "account_onboarding"
    assert create.call_args.kwargs["return_url"] == "https://a.test/done"
    assert link.expires_at == 1_700_000_000
