"""Shared request dependencies and the camelCase base model for API payloads."""

from fastapi import Request
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from session_billing.config import settings
from session_billing.errors import Unauthenticated
from session_billing.providers import PaymentProcessor, get_processor


class ApiModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True, "from_attributes": True}


async def get_caller(request: Request) -> str:
    """
    Caller uid as asserted by the upstream auth gateway.

    Raised before any other validation so an anonymous request never learns
    anything about the target record.
    """
    caller = request.headers.get(settings.caller_header, "").strip()
    if not caller:
        raise Unauthenticated()
    return caller


def get_payment_processor() -> PaymentProcessor:
    return get_processor()
