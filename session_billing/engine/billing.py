"""
Billing arithmetic for held sessions.

Pure functions, no I/O. The capture engine and the session lifecycle both
resolve billable minutes through ``resolve_billing_minutes`` so the value
recorded at completion and the value used at capture agree.

Billable minutes, in priority order:
  1. A previously recorded positive value
  2. Otherwise elapsed minutes (recorded, or derived from timestamps)
     passed through the termination policy:
       - ended by the companion: max(minimum, elapsed)
       - ended by the speaker, by timeout, or unknown: full duration
  3. Clamped to [0, duration]

Capture amount is ceil(hold * billable / duration), clamped to [1, hold].
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from session_billing.models.enums import TerminationReason

DEFAULT_PAYEE_MINIMUM_MINUTES = 10

_MINUTE = timedelta(minutes=1)


@dataclass
class BillingBreakdown:
    """How many minutes a session bills and why."""

    billing_minutes: int
    actual_minutes: Optional[int]
    termination_reason: Optional[TerminationReason]
    source: str  # "recorded" or "policy"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def elapsed_minutes(started_at: Optional[datetime], ended_at: Optional[datetime]) -> Optional[int]:
    """Whole minutes between two timestamps, rounded up, never negative. None if either is missing."""
    if started_at is None or ended_at is None:
        return None
    delta = _as_utc(ended_at) - _as_utc(started_at)
    if delta <= timedelta(0):
        return 0
    whole, remainder = divmod(delta, _MINUTE)
    return whole + (1 if remainder else 0)


def parse_termination_reason(value: Optional[str]) -> Optional[TerminationReason]:
    if value is None:
        return None
    return TerminationReason(value)


def resolve_billing_minutes(
    duration_minutes: int,
    termination_reason: Optional[TerminationReason],
    recorded_billing_minutes: Optional[int] = None,
    actual_minutes: Optional[int] = None,
    started_at: Optional[datetime] = None,
    ended_at: Optional[datetime] = None,
    payee_minimum_minutes: int = DEFAULT_PAYEE_MINIMUM_MINUTES,
) -> BillingBreakdown:
    """
    Resolve the billable minutes of a session.

    Args:
        duration_minutes: Committed session length.
        termination_reason: Who ended the session.
        recorded_billing_minutes: Value stored at completion, if any.
        actual_minutes: Elapsed minutes stored at completion, if any.
        started_at: Start timestamp used when no elapsed value is stored.
        ended_at: End timestamp used when no elapsed value is stored.
        payee_minimum_minutes: Floor billed when the companion ends early.

    Returns:
        BillingBreakdown with minutes clamped to [0, duration_minutes].
    """
    if actual_minutes is None:
        actual_minutes = elapsed_minutes(started_at, ended_at)

    if recorded_billing_minutes is not None and recorded_billing_minutes > 0:
        minutes = recorded_billing_minutes
        source = "recorded"
    else:
        elapsed = max(actual_minutes or 0, 0)
        match termination_reason:
            case TerminationReason.BY_COMPANION:
                minutes = max(payee_minimum_minutes, elapsed)
            case TerminationReason.BY_SPEAKER | TerminationReason.TIMEOUT | None:
                minutes = duration_minutes
        source = "policy"

    minutes = min(max(minutes, 0), duration_minutes)
    return BillingBreakdown(
        billing_minutes=minutes,
        actual_minutes=actual_minutes,
        termination_reason=termination_reason,
        source=source,
    )


def compute_capture_amount(hold_amount: int, billing_minutes: int, duration_minutes: int) -> int:
    """
    Pro-rate a hold by billed minutes.

    Rounds up so fractional cents are never under-collected, never returns
    zero and never exceeds the hold.

    Raises:
        ValueError: If the hold or duration is not positive.
    """
    if hold_amount <= 0:
        raise ValueError(f"Hold amount must be positive: {hold_amount}")
    if duration_minutes <= 0:
        raise ValueError(f"Duration must be positive: {duration_minutes}")

    billed = min(max(billing_minutes, 0), duration_minutes)
    amount = -(-hold_amount * billed // duration_minutes)
    return min(max(amount, 1), hold_amount)


def resolve_committed_amount(
    flat_amount: Optional[int],
    duration_minutes: Optional[int],
    price_per_minute: Optional[int],
) -> Optional[int]:
    """Flat amount when positive, else duration * per-minute rate. None when neither yields a positive amount."""
    if flat_amount is not None and flat_amount > 0:
        return int(flat_amount)
    if duration_minutes and price_per_minute:
        amount = int(duration_minutes) * int(price_per_minute)
        if amount > 0:
            return amount
    return None
