"""Shared test fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from session_billing.database import build_engine
from session_billing.engine import vault
from session_billing.models.enums import SessionStatus
from session_billing.models.records import Base, CallSession
from session_billing.providers.mock_provider import MockPaymentProcessor

SPEAKER = "speaker-ana"
COMPANION = "companion-luis"
OUTSIDER = "someone-else"


@pytest_asyncio.fixture
async def db_session():
    """Create a fresh in-memory database for each test."""
    engine = build_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def processor() -> MockPaymentProcessor:
    return MockPaymentProcessor(decline_rate=0.0, latency_ms=0)


async def register_card(db, processor, payer_id=SPEAKER, brand="visa", last4="4242"):
    """Run the full card registration as the mobile client would."""
    handle = await vault.begin_instrument_registration(db, processor, payer_id)
    processor.confirm_setup_intent(handle.setup_intent_id, brand=brand, last4=last4)
    return await vault.finalize_instrument_registration(db, processor, payer_id, handle.setup_intent_id)


@pytest_asyncio.fixture
async def speaker_with_card(db_session, processor):
    """Speaker who has saved a card."""
    return await register_card(db_session, processor)


async def add_session(db, **fields) -> CallSession:
    """Insert a session directly, bypassing the booking rules."""
    values = {
        "speaker_id": SPEAKER,
        "companion_id": COMPANION,
        "status": SessionStatus.SCHEDULED.value,
        "price": 10_000,
        "duration_minutes": 20,
        "currency": "usd",
    }
    values.update(fields)
    session = CallSession(**values)
    db.add(session)
    await db.commit()
    return session


async def mark_completed(db, session: CallSession, **fields) -> CallSession:
    """Close a session with explicit billing fields."""
    session.status = SessionStatus.COMPLETED.value
    session.completed_at = fields.pop("completed_at", datetime.now(timezone.utc))
    for name, value in fields.items():
        setattr(session, name, value)
    await db.commit()
    return session


def minutes_ago(minutes: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)
