from session_billing.models.enums import IntentStatus, OfferStatus, SessionStatus, TerminationReason
from session_billing.models.records import AuditLog, Base, CallSession, Offer, Payee, Payer

__all__ = [
    "Base",
    "Payer",
    "Payee",
    "CallSession",
    "Offer",
    "AuditLog",
    "IntentStatus",
    "OfferStatus",
    "SessionStatus",
    "TerminationReason",
]
