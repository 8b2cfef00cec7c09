"""SQLAlchemy models for session billing."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:16]


class Payer(Base):
    """
    The speaker side of a session: the person whose card is held and charged.

    Created lazily by the first vault or hold call. The card brand and last
    four digits are stored for display only.
    """

    __tablename__ = "payers"

    id = Column(String(128), primary_key=True)  # caller uid
    customer_id = Column(String(100), nullable=True, unique=True)
    default_payment_method_id = Column(String(100), nullable=True)
    card_brand = Column(String(30), nullable=True)
    card_last4 = Column(String(4), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Payee(Base):
    """
    The companion side of a session: the person who receives payouts.

    Readiness flags are only ever copied from the processor by an explicit
    status refresh, never inferred locally.
    """

    __tablename__ = "payees"

    id = Column(String(128), primary_key=True)  # caller uid
    account_id = Column(String(100), nullable=True, unique=True)
    details_submitted = Column(Boolean, nullable=False, default=False)
    payouts_enabled = Column(Boolean, nullable=False, default=False)
    charges_enabled = Column(Boolean, nullable=False, default=False)
    status_refreshed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class CallSession(Base):
    """
    One billable conversation between a speaker and a companion.

    Field groups are written at distinct points of the lifecycle:
      - hold fields once, by the hold authorizer
      - billing fields once, when the session completes
      - capture fields once, by the capture engine

    The hold and capture groups are written with conditional updates so a
    second writer cannot overwrite the first one's outcome.
    """

    __tablename__ = "sessions"

    id = Column(String(16), primary_key=True, default=new_id)
    speaker_id = Column(String(128), nullable=False, index=True)
    companion_id = Column(String(128), nullable=False, index=True)
    offer_id = Column(String(16), ForeignKey("offers.id"), nullable=True)
    status = Column(String(20), nullable=False, default="scheduled")

    # Commitment
    price = Column(Integer, nullable=True)  # minor units; overrides the per-minute rate
    price_per_minute = Column(Integer, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")

    # Hold
    payment_intent_id = Column(String(100), nullable=True, unique=True)
    payment_intent_status = Column(String(40), nullable=True)
    hold_amount = Column(Integer, nullable=True)
    hold_created_at = Column(DateTime(timezone=True), nullable=True)

    # Billing. Elapsed minutes run from created_at; started_at is informational only.
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    ended_by = Column(String(128), nullable=True)
    termination_reason = Column(String(20), nullable=True)
    actual_minutes = Column(Integer, nullable=True)
    billing_minutes = Column(Integer, nullable=True)

    # Capture
    payment_captured = Column(Boolean, nullable=False, default=False)
    amount_captured = Column(Integer, nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    capture_termination_reason = Column(String(20), nullable=True)
    capture_actual_minutes = Column(Integer, nullable=True)
    capture_billing_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Offer(Base):
    """
    A session proposal that becomes a CallSession once the speaker pays.

    The committed amount is either the flat ``amount`` or
    ``duration_minutes * price_per_minute``. After the hold is placed the
    offer is marked ``used`` and ``session_id`` points at the materialized
    session; payment fields never change after that.
    """

    __tablename__ = "offers"

    id = Column(String(16), primary_key=True, default=new_id)
    speaker_id = Column(String(128), nullable=False, index=True)
    companion_id = Column(String(128), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending_review")

    amount = Column(Integer, nullable=True)
    price_per_minute = Column(Integer, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")

    payment_intent_id = Column(String(100), nullable=True, unique=True)
    payment_intent_status = Column(String(40), nullable=True)
    hold_amount = Column(Integer, nullable=True)
    hold_created_at = Column(DateTime(timezone=True), nullable=True)
    session_id = Column(String(16), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class AuditLog(Base):
    """
    Immutable audit trail entry.

    Every money-relevant state change (customer created, card saved, hold
    placed, capture recorded, payout account refreshed) gets an entry.
    These are append-only and never modified.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(128), nullable=True, index=True)
    session_id = Column(String(16), nullable=True, index=True)
    offer_id = Column(String(16), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)
