# backend/rentledger/main.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .clients.extraction import ExtractionClient
from .clients.notifications import ReminderNotifier, build_notifier
from .config import settings
from .errors import RentLedgerError
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .services.payment_gateways import GatewayRotation
from .storage import StorageProvider, build_storage_provider

from .routers.health import router as health_router
from .routers.categories import router as categories_router
from .routers.statements import router as statements_router
from .routers.bank_transactions import router as bank_transactions_router
from .routers.ledger import router as ledger_router
from .routers.tenants import router as tenants_router
from .routers.payments import router as payments_router
from .routers.reminders import router as reminders_router

API_PREFIX = "/api"

log = logging.getLogger("rentledger.app")


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


async def _domain_error(request: Request, exc: RentLedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request failed: %s", exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


def create_app(
    storage_provider: Optional[StorageProvider] = None,
    *,
    extraction_client: Optional[ExtractionClient] = None,
    notifier: Optional[ReminderNotifier] = None,
) -> FastAPI:
    """
    Build the API. The storage backend, extraction client, notifier and
    gateway rotation are chosen here once and shared by every request
    through app.state.
    """
    configure_logging()

    app = FastAPI(title="RentLedger", version="0.1.0")
    app.state.storage_provider = storage_provider or build_storage_provider(settings)
    app.state.extraction_client = extraction_client or ExtractionClient()
    app.state.notifier = notifier or build_notifier(settings)
    app.state.gateway_rotation = GatewayRotation()

    # Request-ID outermost so the access log line carries it
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RentLedgerError, _domain_error)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(categories_router, prefix=API_PREFIX)
    app.include_router(statements_router, prefix=API_PREFIX)
    app.include_router(bank_transactions_router, prefix=API_PREFIX)
    app.include_router(ledger_router, prefix=API_PREFIX)
    app.include_router(tenants_router, prefix=API_PREFIX)
    app.include_router(payments_router, prefix=API_PREFIX)
    app.include_router(reminders_router, prefix=API_PREFIX)

    return app


app = create_app()
