# backend/rentledger/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, HTTPException, Request

from .config import settings
from .deps import get_storage
from .models import User
from .services.categories import ensure_default_categories
from .storage.base import Storage


@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str


def get_principal(request: Request, store: Storage = Depends(get_storage)) -> Principal:
    """
    Dev header auth: X-User-Email names the acting user. Real session auth
    lives in front of this service; prod refuses auth_mode=dev at startup.
    """
    if (settings.auth_mode or "").strip().lower() != "dev":
        raise HTTPException(status_code=401, detail="Unsupported auth mode")

    email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_email} for dev auth")

    user = store.get_user_by_email(email)
    if user is None and settings.dev_auto_provision:
        with store.atomic():
            user = store.add(User(email=email, display_name=email.split("@")[0], created_at=datetime.utcnow()))
        ensure_default_categories(store, user.id)

    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")

    request.state.user_email = email
    return Principal(user_id=int(user.id), email=str(user.email))
