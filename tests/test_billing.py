"""Tests for billable-minute resolution and capture amount arithmetic."""

from datetime import datetime, timedelta, timezone

import pytest

from session_billing.engine.billing import (
    compute_capture_amount,
    elapsed_minutes,
    resolve_billing_minutes,
    resolve_committed_amount,
)
from session_billing.models.enums import TerminationReason

T0 = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)


class TestElapsedMinutes:
    def test_rounds_partial_minutes_up(self):
        assert elapsed_minutes(T0, T0 + timedelta(minutes=2, seconds=1)) == 3

    def test_exact_minutes(self):
        assert elapsed_minutes(T0, T0 + timedelta(minutes=15)) == 15

    def test_single_millisecond_counts_as_a_minute(self):
        assert elapsed_minutes(T0, T0 + timedelta(milliseconds=1)) == 1

    def test_negative_span_floors_at_zero(self):
        assert elapsed_minutes(T0, T0 - timedelta(minutes=5)) == 0

    def test_missing_timestamp(self):
        assert elapsed_minutes(None, T0) is None
        assert elapsed_minutes(T0, None) is None

    def test_naive_timestamps_are_treated_as_utc(self):
        naive_start = T0.replace(tzinfo=None)
        assert elapsed_minutes(naive_start, T0 + timedelta(minutes=4)) == 4


class TestTerminationPolicy:
    def test_companion_early_end_bills_the_floor(self):
        result = resolve_billing_minutes(20, TerminationReason.BY_COMPANION, actual_minutes=3)
        assert result.billing_minutes == 10
        assert result.source == "policy"

    def test_companion_late_end_bills_elapsed(self):
        result = resolve_billing_minutes(20, TerminationReason.BY_COMPANION, actual_minutes=15)
        assert result.billing_minutes == 15

    def test_timeout_bills_full_duration(self):
        result = resolve_billing_minutes(20, TerminationReason.TIMEOUT, actual_minutes=3)
        assert result.billing_minutes == 20

    def test_speaker_early_end_bills_full_duration(self):
        result = resolve_billing_minutes(20, TerminationReason.BY_SPEAKER, actual_minutes=1)
        assert result.billing_minutes == 20

    def test_unknown_reason_bills_full_duration(self):
        result = resolve_billing_minutes(20, None, actual_minutes=4)
        assert result.billing_minutes == 20

    def test_companion_overrun_is_clamped_to_duration(self):
        result = resolve_billing_minutes(20, TerminationReason.BY_COMPANION, actual_minutes=31)
        assert result.billing_minutes == 20

    def test_floor_is_clamped_for_short_sessions(self):
        result = resolve_billing_minutes(5, TerminationReason.BY_COMPANION, actual_minutes=1)
        assert result.billing_minutes == 5

    def test_elapsed_derived_from_timestamps(self):
        result = resolve_billing_minutes(
            30,
            TerminationReason.BY_COMPANION,
            started_at=T0,
            ended_at=T0 + timedelta(minutes=12, seconds=30),
        )
        assert result.actual_minutes == 13
        assert result.billing_minutes == 13

    def test_companion_without_any_timing_bills_the_floor(self):
        result = resolve_billing_minutes(20, TerminationReason.BY_COMPANION)
        assert result.actual_minutes is None
        assert result.billing_minutes == 10

    def test_custom_floor(self):
        result = resolve_billing_minutes(20, TerminationReason.BY_COMPANION, actual_minutes=2, payee_minimum_minutes=5)
        assert result.billing_minutes == 5


class TestRecordedMinutes:
    def test_recorded_value_wins_over_policy(self):
        result = resolve_billing_minutes(20, TerminationReason.TIMEOUT, recorded_billing_minutes=7, actual_minutes=3)
        assert result.billing_minutes == 7
        assert result.source == "recorded"

    def test_zero_recorded_value_is_ignored(self):
        result = resolve_billing_minutes(20, TerminationReason.BY_COMPANION, recorded_billing_minutes=0, actual_minutes=3)
        assert result.billing_minutes == 10
        assert result.source == "policy"

    def test_recorded_value_is_clamped(self):
        result = resolve_billing_minutes(20, TerminationReason.BY_SPEAKER, recorded_billing_minutes=45)
        assert result.billing_minutes == 20


class TestCaptureAmount:
    def test_half_of_the_session(self):
        assert compute_capture_amount(10_000, 10, 20) == 5000

    def test_rounds_fractional_cents_up(self):
        assert compute_capture_amount(999, 1, 7) == 143

    def test_full_duration_captures_the_whole_hold(self):
        assert compute_capture_amount(4321, 30, 30) == 4321

    def test_never_zero(self):
        assert compute_capture_amount(5000, 0, 20) == 1

    def test_never_exceeds_hold(self):
        assert compute_capture_amount(5000, 50, 20) == 5000

    def test_monotonic_in_billed_minutes(self):
        for hold, duration in [(10_000, 20), (999, 7), (1, 60), (12_345, 45)]:
            amounts = [compute_capture_amount(hold, minutes, duration) for minutes in range(duration + 1)]
            assert amounts == sorted(amounts), f"Not monotonic for hold={hold} duration={duration}"
            assert all(1 <= a <= hold for a in amounts)

    def test_large_amounts_use_exact_integer_math(self):
        assert compute_capture_amount(10**15 + 1, 1, 3) == (10**15 + 1 + 2) // 3

    def test_rejects_non_positive_inputs(self):
        with pytest.raises(ValueError):
            compute_capture_amount(0, 5, 10)
        with pytest.raises(ValueError):
            compute_capture_amount(1000, 5, 0)


class TestCommittedAmount:
    def test_flat_amount(self):
        assert resolve_committed_amount(2500, 20, 100) == 2500

    def test_per_minute_rate(self):
        assert resolve_committed_amount(None, 30, 50) == 1500

    def test_zero_flat_amount_falls_back_to_rate(self):
        assert resolve_committed_amount(0, 10, 75) == 750

    def test_nothing_positive(self):
        assert resolve_committed_amount(None, 30, None) is None
        assert resolve_committed_amount(0, 0, 50) is None
        assert resolve_committed_amount(-100, 10, 0) is None
