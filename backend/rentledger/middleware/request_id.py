# backend/rentledger/middleware/request_id.py
from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# correlation id of the current HTTP request or worker task
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"


def get_request_id() -> str | None:
    return request_id_ctx.get()


@contextmanager
def bound_request_id(rid: Optional[str] = None) -> Iterator[str]:
    """
    Binds a correlation id for the duration of one unit of work.

    Log lines and audit rows written inside the block carry it, so a statement
    upload or a reminder cycle can be traced from the request (or Celery task)
    that caused it down to every payment and reminder it touched.
    """
    rid = (rid or "").strip()[:64] or uuid.uuid4().hex
    token = request_id_ctx.set(rid)
    try:
        yield rid
    finally:
        request_id_ctx.reset(token)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Accepts the caller's X-Request-ID (any header casing) or mints one, and echoes it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with bound_request_id(request.headers.get(REQUEST_ID_HEADER)) as rid:
            resp = await call_next(request)
            resp.headers[REQUEST_ID_HEADER] = rid
            return resp
