"""Liveness endpoint."""

from fastapi import APIRouter

from session_billing.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "ok", "processor": settings.processor_backend}
