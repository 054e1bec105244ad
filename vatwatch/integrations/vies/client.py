"""Async httpx client for the EU VIES VAT number validation service."""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from vatwatch.integrations.vies.schemas import ViesCheckRequest, ViesCheckResult
from vatwatch.lifecycle.classifier import ValidityCheckError, ValidityErrorKind

logger = logging.getLogger(__name__)

# VIES response field names
_FIELD_VALID = "valid"
_FIELD_NAME = "name"
_FIELD_ADDRESS = "address"
_FIELD_REQUEST_DATE = "requestDate"
_FIELD_USER_ERROR = "userError"
_FIELD_ERROR_WRAPPERS = "errorWrappers"

# userError values that are verdicts, not failures
_USER_ERROR_VERDICTS = frozenset({"VALID", "INVALID"})


class ViesClient:
    """Thin async wrapper around the VIES check-vat-number endpoint.

    Endpoint: POST {url} with JSON {"countryCode": ..., "vatNumber": ...}

    Every failure surfaces as ValidityCheckError whose message carries the
    VIES error code when VIES reported one, so that the classifier can tell
    transient outages from bad input.
    """

    def __init__(self, url: str, timeout: float = 15.0) -> None:
        self._url = url
        self._timeout = httpx.Timeout(timeout, connect=5.0)
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Open the HTTP connection pool. Safe to call more than once."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            logger.info("VIES client ready (%s)", self._url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def check_validity(self, country_code: str, vat_number: str) -> ViesCheckResult:
        """Ask VIES whether a VAT number is registered."""
        await self.connect()
        assert self._client is not None  # noqa: S101

        body = ViesCheckRequest(countryCode=country_code, vatNumber=vat_number)

        try:
            response = await self._client.post(self._url, json=body.model_dump())
        except httpx.TimeoutException as exc:
            logger.warning("VIES timeout for %s", country_code)
            raise ValidityCheckError(f"TIMEOUT: {exc}", ValidityErrorKind.TIMEOUT) from exc
        except httpx.TransportError as exc:
            logger.warning("VIES connection error for %s: %s", country_code, exc)
            raise ValidityCheckError(
                f"CONNECTION_ERROR: {exc}", ValidityErrorKind.CONNECTION_ERROR
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ValidityCheckError(
                f"Unexpected response from VIES (HTTP {response.status_code}): {exc}"
            ) from exc

        codes = _error_codes(payload)
        if codes:
            raise ValidityCheckError(f"VIES error: {', '.join(codes)}")

        if response.status_code >= 500:
            raise ValidityCheckError(
                f"SERVICE_UNAVAILABLE: VIES returned HTTP {response.status_code}",
                ValidityErrorKind.SERVICE_UNAVAILABLE,
            )
        if response.status_code >= 400:
            raise ValidityCheckError(f"VIES returned HTTP {response.status_code}: {response.text[:200]}")

        if not isinstance(payload, dict) or _FIELD_VALID not in payload:
            raise ValidityCheckError(
                "Unexpected response from VIES: no validity verdict",
                ValidityErrorKind.SERVICE_UNAVAILABLE,
            )

        return self._parse_response(payload)

    def _parse_response(self, payload: dict) -> ViesCheckResult:
        """Parse the VIES JSON response into a ViesCheckResult."""
        name: str | None = payload.get(_FIELD_NAME) or None
        if name:
            name = name.strip()

        request_date: datetime | None = None
        raw_date = payload.get(_FIELD_REQUEST_DATE)
        if raw_date:
            try:
                request_date = datetime.fromisoformat(str(raw_date).replace("Z", "+00:00"))
            except ValueError:
                logger.debug("Could not parse VIES requestDate: %s", raw_date)

        return ViesCheckResult(
            valid=bool(payload[_FIELD_VALID]),
            name=name,
            address=payload.get(_FIELD_ADDRESS) or None,
            request_date=request_date,
            raw_response=payload,
        )


def _error_codes(payload: object) -> list[str]:
    """Collect VIES error codes from a response body."""
    if not isinstance(payload, dict):
        return []

    codes: list[str] = []
    for wrapper in payload.get(_FIELD_ERROR_WRAPPERS) or []:
        if isinstance(wrapper, dict) and wrapper.get("error"):
            codes.append(str(wrapper["error"]))

    user_error = payload.get(_FIELD_USER_ERROR)
    if user_error and user_error not in _USER_ERROR_VERDICTS:
        codes.append(str(user_error))
    return codes
