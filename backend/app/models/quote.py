"""
Pydantic models and result types for quote requests.

Models:
  QuoteRequest      — validated body of POST /send-quote
  QuoteJob          — unit of background work queued by the intake endpoint
  QuoteAccepted     — 202 response body

Result types (plain dataclasses, never serialized to clients):
  StageResult       — outcome of one pipeline stage
  RenderResult      — rendered PDF bytes or the reason rendering failed
  DeliveryReport    — per-recipient outcome of email dispatch
  JobOutcome        — everything the worker learned while processing a job
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class QuoteRequest(BaseModel):
    """
    Quote request sent by the storefront checkout.

    Product line items are kept as raw dicts: the cart may send prices as
    strings or omit the precomputed line total, and compute_total copes with
    both. Unknown top-level fields are kept so they still count towards the
    fingerprint.
    """
    model_config = {"extra": "allow"}

    name: str
    email: str
    phone: str
    company: Optional[str] = None
    message: Optional[str] = None
    products: list[dict[str, Any]] = Field(min_length=1)

    @field_validator("name", "phone")
    @classmethod
    def _required_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        if not _EMAIL_RE.match(value.strip()):
            raise ValueError("must be a valid email address")
        return value.strip()


class QuoteJob(BaseModel):
    """A quote request waiting for (or undergoing) background processing."""
    body: dict[str, Any]
    headers: dict[str, str] = {}
    fingerprint: str
    received_at: float
    base_url: str = ""


class QuoteAccepted(BaseModel):
    success: bool = True
    queued: Optional[bool] = None
    duplicate: Optional[bool] = None
    message: str


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------

class StageStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageResult:
    stage: str
    status: StageStatus
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.OK


@dataclass
class RenderResult:
    pdf: Optional[bytes] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.pdf)


@dataclass
class DeliveryReport:
    status: StageStatus = StageStatus.OK
    sent: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass
class JobOutcome:
    fingerprint: str
    render: StageResult
    delivery: DeliveryReport
    file_name: Optional[str] = None
    download_token: Optional[str] = None
    download_url: Optional[str] = None
    total: float = 0.0
