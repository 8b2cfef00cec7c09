"""
Shared checks and the processor call boundary.

Every engine operation starts with ``require_caller`` and loads its target
through ``get_record``. Processor calls go through ``call_processor``,
which turns ``ProcessorError`` into ``FailedPrecondition`` with the
processor's message appended. Nothing is retried.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from session_billing.errors import FailedPrecondition, NotFound, ProcessorError, Unauthenticated

logger = logging.getLogger("session_billing.engine")

T = TypeVar("T")


def require_caller(caller_id: Optional[str]) -> str:
    if not caller_id or not str(caller_id).strip():
        raise Unauthenticated()
    return str(caller_id).strip()


async def get_record(db: AsyncSession, model: type[T], record_id: Optional[str], label: str) -> T:
    """Load a record by id or raise NotFound."""
    record = await db.get(model, record_id) if record_id else None
    if record is None:
        raise NotFound(f"{label} not found: {record_id}")
    return record


async def get_or_create(db: AsyncSession, model: type[T], record_id: str) -> T:
    """
    Load a per-user record, creating an empty one on first use.

    Two first calls can race on the insert; the loser rolls back and reads
    the winner's row.
    """
    record = await db.get(model, record_id)
    if record is not None:
        return record

    record = model(id=record_id)
    db.add(record)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        record = await db.get(model, record_id)
        if record is None:
            raise
    return record


async def call_processor(
    context: str,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> Any:
    """
    Await a processor call, surfacing rejections as FailedPrecondition.

    Args:
        context: Prefix for the error message (e.g. "Hold authorization failed").
        func: Bound async processor method.

    Raises:
        FailedPrecondition: The processor rejected the call.
    """
    try:
        return await func(*args, **kwargs)
    except ProcessorError as e:
        logger.warning("%s: %s (code=%s)", context, e.message, e.code or "-")
        raise FailedPrecondition(f"{context}: {e.message}") from e
