
from __future__ import annotations

from datetime import date
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings


class StatementPeriod(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ExtractedTransaction(BaseModel):
    model_config = ConfigDict(extra="allow")

    date: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    type: Optional[str] = None  # income|expense
    category: Optional[str] = None
    reference: Optional[str] = None
    counterparty: Optional[str] = None
    balance: Optional[float] = None


class ExtractionResult(BaseModel):
    """
    Structured payload returned by the document-understanding service.

    `error` is set instead of raising when the service could not be reached
    or returned something that is not a bank statement payload.
    """

    model_config = ConfigDict(extra="allow")

    document_type: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    currency: Optional[str] = None
    statement_period: StatementPeriod = Field(default_factory=StatementPeriod)
    starting_balance: Optional[float] = None
    ending_balance: Optional[float] = None
    transactions: list[ExtractedTransaction] = Field(default_factory=list)
    error: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failed(cls, error: str, **raw: Any) -> "ExtractionResult":
        return cls(error=error, raw=raw)

    @property
    def ok(self) -> bool:
        return self.error is None


MIME_TYPES = {
    "pdf": "application/pdf",
    "csv": "text/csv",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "txt": "text/plain",
}


class ExtractionClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base = (base_url or settings.extraction_base_url or "").rstrip("/")
        self.api_key = api_key if api_key is not None else settings.extraction_api_key
        self.timeout = timeout or settings.extraction_timeout_seconds
        self.transport = transport

    def enabled(self) -> bool:
        return bool(self.base)

    def extract(self, file_bytes: bytes, file_type: str) -> ExtractionResult:
        if not self.enabled():
            return ExtractionResult.failed("extraction_base_url not set")

        ft = (file_type or "").strip().lower().lstrip(".")
        url = f"{self.base}/extract"
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        files = {"file": (f"statement.{ft or 'bin'}", file_bytes, MIME_TYPES.get(ft, "application/octet-stream"))}

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(url, files=files, data={"file_type": ft}, headers=headers)
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            return ExtractionResult.failed(str(e), endpoint=url)

        if not isinstance(data, dict):
            return ExtractionResult.failed("extraction payload is not an object", endpoint=url)
        if data.get("extractionError"):
            return ExtractionResult.failed(str(data["extractionError"]), endpoint=url)

        try:
            out = ExtractionResult.model_validate(data)
        except ValidationError as e:
            return ExtractionResult.failed(f"unexpected extraction payload: {e.error_count()} errors", endpoint=url)

        if (out.document_type or "bank_statement") != "bank_statement":
            return ExtractionResult.failed(f"not a bank statement: {out.document_type}", endpoint=url)
        out.raw = data
        return out
