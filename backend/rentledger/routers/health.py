# backend/rentledger/routers/health.py
from __future__ import annotations

from fastapi import APIRouter, Request

from ..config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    provider = getattr(request.app.state, "storage_provider", None)
    return {
        "ok": True,
        "env": settings.app_env,
        "storage": type(provider).__name__ if provider is not None else None,
    }
