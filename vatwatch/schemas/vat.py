"""Domain schemas for monitored VAT numbers.

These are the shapes the request store hands out; ORM rows never leave the
store.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator


class VatIdentity(BaseModel):
    """Compound key of one monitored registration."""

    model_config = ConfigDict(frozen=True)

    owner_id: str  # Telegram chat id
    country_code: str
    vat_number: str

    @field_validator("owner_id", mode="before")
    @classmethod
    def coerce_owner_id(cls, v: object) -> object:
        """Telegram chat ids arrive as ints from the bot and as strings over HTTP."""
        if isinstance(v, int):
            return str(v)
        return v

    @property
    def display(self) -> str:
        """VAT number as the user typed it, e.g. 'PL1234567890'."""
        return f"{self.country_code}{self.vat_number}"

    @property
    def identity(self) -> VatIdentity:
        return VatIdentity(
            owner_id=self.owner_id,
            country_code=self.country_code,
            vat_number=self.vat_number,
        )


class PendingRequest(VatIdentity):
    """A VAT number under active periodic monitoring."""

    expiration_date: datetime


class ErroredRequest(VatIdentity):
    """One failed monitoring attempt, parked until resolved."""

    id: uuid.UUID
    expiration_date: datetime
    error_text: str

    @property
    def pending(self) -> PendingRequest:
        """The pending request this error was demoted from."""
        return PendingRequest(
            owner_id=self.owner_id,
            country_code=self.country_code,
            vat_number=self.vat_number,
            expiration_date=self.expiration_date,
        )


class ResolveOutcome(str, Enum):
    """Result of clearing one errored request."""

    NOT_FOUND = "error_not_found"
    ERROR_RESOLVED = "error_resolved"
    ALL_RESOLVED = "all_errors_resolved"
    ALL_RESOLVED_AND_RESUMED = "all_errors_resolved_and_monitoring_resumed"


@dataclass(frozen=True)
class ResolveResult:
    """Outcome of ``resolve_error`` plus the request it concerned (None when not found)."""

    outcome: ResolveOutcome
    request: ErroredRequest | None = None
