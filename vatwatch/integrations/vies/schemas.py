"""Pydantic schemas for the VIES VAT check REST API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator


class ViesCheckRequest(BaseModel):
    """Body of the VIES check call."""

    countryCode: str  # noqa: N815
    vatNumber: str  # noqa: N815

    @field_validator("countryCode")
    @classmethod
    def normalize_country_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("vatNumber")
    @classmethod
    def normalize_vat_number(cls, v: str) -> str:
        """VIES rejects embedded spaces."""
        return v.replace(" ", "")


class ViesCheckResult(BaseModel):
    """Result of a successful VIES check."""

    valid: bool
    name: str | None = None  # trader name, "---" when the member state withholds it
    address: str | None = None
    request_date: datetime | None = None
    raw_response: dict = {}
