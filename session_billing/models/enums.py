"""Enumerations for the session billing domain model."""

from enum import Enum


class SessionStatus(str, Enum):
    """Lifecycle states for a call session."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELED = "canceled"


class OfferStatus(str, Enum):
    """Lifecycle states for an offer awaiting the speaker's payment."""

    PENDING_REVIEW = "pending_review"
    ACCEPTED = "accepted"
    USED = "used"
    DECLINED = "declined"
    EXPIRED = "expired"


class TerminationReason(str, Enum):
    """Who (or what) ended a session."""

    BY_SPEAKER = "by_speaker"
    BY_COMPANION = "by_companion"
    TIMEOUT = "timeout"


class IntentStatus(str, Enum):
    """Processor-side states of a payment intent."""

    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    CANCELED = "canceled"
    SUCCEEDED = "succeeded"
