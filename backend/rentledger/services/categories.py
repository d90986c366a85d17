# backend/rentledger/services/categories.py
from __future__ import annotations

from typing import Optional

from ..config import settings
from ..domain.audit import audit_write
from ..models import DEFAULT_CATEGORIES, TransactionCategory
from ..storage.base import Storage


def ensure_default_categories(store: Storage, user_id: int) -> list[TransactionCategory]:
    """Idempotent: creates whichever default categories the user is missing."""
    have = {(c.name or "").strip().lower() for c in store.list_categories(user_id)}
    with store.atomic():
        for name, typ in DEFAULT_CATEGORIES:
            if name.lower() in have:
                continue
            row = store.add(TransactionCategory(user_id=int(user_id), name=name, type=typ, is_default=True))
            audit_write(
                store,
                user_id=user_id,
                action="category.seed",
                entity_type="TransactionCategory",
                entity_id=row.id,
                after={"name": name, "type": typ},
            )
    return store.list_categories(user_id)


def rent_income_category(store: Storage, user_id: int, name: Optional[str] = None) -> Optional[TransactionCategory]:
    want = (name or settings.rent_income_category).strip().lower()
    hits = [c for c in store.list_categories(user_id) if (c.name or "").strip().lower() == want]
    if not hits:
        return None
    # the seeded default wins over a user-created duplicate name in another case
    hits.sort(key=lambda c: (not c.is_default, c.id))
    return hits[0]
