# backend/rentledger/deps.py
from __future__ import annotations

from typing import Iterator

from fastapi import Request

from .clients.extraction import ExtractionClient
from .clients.notifications import ReminderNotifier
from .services.payment_gateways import GatewayRotation
from .storage import StorageProvider
from .storage.base import Storage


def get_storage(request: Request) -> Iterator[Storage]:
    """Request-scoped Storage from the provider chosen in create_app()."""
    provider: StorageProvider = request.app.state.storage_provider
    with provider.session() as store:
        yield store


def get_extraction_client(request: Request) -> ExtractionClient:
    return request.app.state.extraction_client


def get_notifier(request: Request) -> ReminderNotifier:
    return request.app.state.notifier


def get_gateway_rotation(request: Request) -> GatewayRotation:
    return request.app.state.gateway_rotation
