# backend/rentledger/errors.py
from __future__ import annotations

from typing import Any, Optional


class RentLedgerError(Exception):
    """Base for domain errors raised by services and mapped to HTTP by main.py."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, *, context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "detail": self.message}
        if self.context:
            out["context"] = self.context
        return out


class ValidationError(RentLedgerError):
    """Malformed input or a balance mismatch beyond tolerance."""

    status_code = 422
    code = "validation_error"


class NotFoundError(RentLedgerError):
    status_code = 404
    code = "not_found"

    @classmethod
    def for_entity(cls, entity: str, entity_id: Any) -> "NotFoundError":
        return cls(f"{entity} not found", context={"entity": entity, "id": entity_id})


class ConflictError(RentLedgerError):
    """State does not allow the operation (closed tax year, duplicate reminder, ...)."""

    status_code = 409
    code = "conflict"
