"""Tests for saving and removing the speaker's card."""

import pytest
from sqlalchemy import select

from session_billing.engine import vault
from session_billing.errors import FailedPrecondition, InvalidArgument, PermissionDenied, Unauthenticated
from session_billing.models.records import AuditLog, Payer
from tests.conftest import OUTSIDER, SPEAKER, register_card


@pytest.mark.asyncio
async def test_begin_creates_customer_once(db_session, processor):
    first = await vault.begin_instrument_registration(db_session, processor, SPEAKER)
    second = await vault.begin_instrument_registration(db_session, processor, SPEAKER)

    assert first.customer_id == second.customer_id
    assert len(processor.customers) == 1
    assert first.setup_intent_id.startswith("seti_")
    assert first.setup_intent_id != second.setup_intent_id
    assert first.ephemeral_key_secret
    assert first.publishable_key == "pk_test_mock"

    payer = await db_session.get(Payer, SPEAKER)
    assert payer.customer_id == first.customer_id


@pytest.mark.asyncio
async def test_begin_requires_caller(db_session, processor):
    with pytest.raises(Unauthenticated):
        await vault.begin_instrument_registration(db_session, processor, None)
    with pytest.raises(Unauthenticated):
        await vault.begin_instrument_registration(db_session, processor, "  ")


@pytest.mark.asyncio
async def test_finalize_sets_default_card(db_session, processor):
    summary = await register_card(db_session, processor, brand="mastercard", last4="4444")

    assert summary.brand == "mastercard"
    assert summary.last4 == "4444"

    payer = await db_session.get(Payer, SPEAKER)
    assert payer.default_payment_method_id == summary.payment_method_id
    assert payer.card_brand == "mastercard"
    assert payer.card_last4 == "4444"
    assert processor.customers[payer.customer_id]["default_payment_method"] == summary.payment_method_id

    actions = (await db_session.execute(select(AuditLog.action))).scalars().all()
    assert "customer_created" in actions
    assert "instrument_saved" in actions


@pytest.mark.asyncio
async def test_finalize_replaces_previous_card(db_session, processor):
    first = await register_card(db_session, processor, last4="1111")
    second = await register_card(db_session, processor, last4="2222")

    payer = await db_session.get(Payer, SPEAKER)
    assert payer.default_payment_method_id == second.payment_method_id != first.payment_method_id
    assert payer.card_last4 == "2222"


@pytest.mark.asyncio
@pytest.mark.parametrize("handle", [None, "", "   "])
async def test_finalize_rejects_missing_handle(db_session, processor, handle):
    with pytest.raises(InvalidArgument):
        await vault.finalize_instrument_registration(db_session, processor, SPEAKER, handle)


@pytest.mark.asyncio
@pytest.mark.parametrize("handle", ["pm_123", "seti_", "seti_abc def", "seti_abc/../x"])
async def test_finalize_rejects_malformed_handle(db_session, processor, handle):
    with pytest.raises(InvalidArgument):
        await vault.finalize_instrument_registration(db_session, processor, SPEAKER, handle)


@pytest.mark.asyncio
async def test_finalize_without_customer(db_session, processor):
    with pytest.raises(FailedPrecondition):
        await vault.finalize_instrument_registration(db_session, processor, SPEAKER, "seti_abc123")


@pytest.mark.asyncio
async def test_finalize_without_confirmed_card(db_session, processor):
    handle = await vault.begin_instrument_registration(db_session, processor, SPEAKER)

    with pytest.raises(FailedPrecondition, match="no payment method"):
        await vault.finalize_instrument_registration(db_session, processor, SPEAKER, handle.setup_intent_id)

    payer = await db_session.get(Payer, SPEAKER)
    assert payer.default_payment_method_id is None


@pytest.mark.asyncio
async def test_finalize_with_someone_elses_setup_intent(db_session, processor):
    other = await vault.begin_instrument_registration(db_session, processor, OUTSIDER)
    processor.confirm_setup_intent(other.setup_intent_id)
    await vault.begin_instrument_registration(db_session, processor, SPEAKER)

    with pytest.raises(PermissionDenied):
        await vault.finalize_instrument_registration(db_session, processor, SPEAKER, other.setup_intent_id)


@pytest.mark.asyncio
async def test_finalize_surfaces_processor_message(db_session, processor):
    handle = await vault.begin_instrument_registration(db_session, processor, SPEAKER)
    processor.fail_next("retrieve_setup_intent", "No such setupintent: 'seti_gone'", code="resource_missing")

    with pytest.raises(FailedPrecondition, match="No such setupintent"):
        await vault.finalize_instrument_registration(db_session, processor, SPEAKER, handle.setup_intent_id)


@pytest.mark.asyncio
async def test_remove_default_card(db_session, processor, speaker_with_card):
    removed = await vault.remove_default_instrument(db_session, processor, SPEAKER)

    assert removed == speaker_with_card.payment_method_id
    assert speaker_with_card.payment_method_id not in processor.attached

    payer = await db_session.get(Payer, SPEAKER)
    assert payer.default_payment_method_id is None
    assert payer.card_brand is None
    assert payer.card_last4 is None
    assert payer.customer_id is not None
    assert processor.customers[payer.customer_id]["default_payment_method"] is None


@pytest.mark.asyncio
async def test_remove_is_a_noop_when_nothing_saved(db_session, processor):
    assert await vault.remove_default_instrument(db_session, processor, SPEAKER) is None
    assert "detach_payment_method" not in processor.calls


@pytest.mark.asyncio
async def test_remove_twice(db_session, processor, speaker_with_card):
    assert await vault.remove_default_instrument(db_session, processor, SPEAKER) is not None
    assert await vault.remove_default_instrument(db_session, processor, SPEAKER) is None


@pytest.mark.asyncio
async def test_remove_tolerates_card_already_detached(db_session, processor, speaker_with_card):
    processor.attached.pop(speaker_with_card.payment_method_id)

    removed = await vault.remove_default_instrument(db_session, processor, SPEAKER)

    assert removed == speaker_with_card.payment_method_id
    payer = await db_session.get(Payer, SPEAKER)
    assert payer.default_payment_method_id is None


@pytest.mark.asyncio
async def test_remove_surfaces_other_processor_errors(db_session, processor, speaker_with_card):
    processor.fail_next("detach_payment_method", "API temporarily unavailable", code="api_error")

    with pytest.raises(FailedPrecondition, match="temporarily unavailable"):
        await vault.remove_default_instrument(db_session, processor, SPEAKER)
