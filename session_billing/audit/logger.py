"""
Immutable audit trail for money-relevant operations.

Every state change gets an append-only audit log entry with:
  - Actor ID (the caller who triggered it)
  - Session / Offer ID (which record it touched)
  - Action (what happened)
  - Details (amounts, processor ids, statuses)
  - Timestamp (UTC)

Entries are added to the caller's database session and committed together
with the state change they describe.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.models.records import AuditLog

logger = logging.getLogger("session_billing.audit")


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[str] = None,
    session_id: Optional[str] = None,
    offer_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an immutable audit log entry.

    Args:
        db: Database session.
        action: What happened (e.g. "hold_created", "capture_recorded").
        actor_id: The caller that triggered this event.
        session_id: The call session this event relates to.
        offer_id: The offer this event relates to.
        details: Arbitrary context (serialized to JSON).

    Returns:
        The created AuditLog record.
    """
    entry = AuditLog(
        actor_id=actor_id,
        session_id=session_id,
        offer_id=offer_id,
        action=action,
        details=json.dumps(details, default=str) if details else None,
        timestamp=datetime.now(timezone.utc),
    )
    db.add(entry)
    logger.info(
        "AUDIT | actor=%s session=%s offer=%s action=%s | %s",
        actor_id or "-",
        session_id or "-",
        offer_id or "-",
        action,
        json.dumps(details, default=str)[:200] if details else "",
    )
    return entry
