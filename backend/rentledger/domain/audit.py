# backend/rentledger/domain/audit.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import inspect as sa_inspect

from ..middleware.request_id import get_request_id
from ..models import AuditEvent
from ..storage.base import Storage


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, sort_keys=True, default=str)


def row_snapshot(row: Any, fields: Optional[tuple[str, ...]] = None) -> dict[str, Any]:
    """Column values of an ORM row as a plain dict (for before/after audit payloads)."""
    keys = fields or tuple(a.key for a in sa_inspect(type(row)).column_attrs)
    return {k: getattr(row, k, None) for k in keys}


def audit_write(
    store: Storage,
    *,
    user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Any,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """
    Stages an AuditEvent in the caller's unit of work.

    Tagged with the bound request id, if any. Does not commit: callers wrap
    the mutation and its audit row in one store.atomic() block so both land
    or neither does.
    """
    row = AuditEvent(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
        request_id=get_request_id(),
        created_at=datetime.utcnow(),
    )
    return store.add(row)
