"""User-facing monitoring operations: submit, remove, remove all, list.

Each operation returns a ServiceReply carrying an HTTP-style status and the
text shown to the user. Failures never escape: store, notification and
unexpected errors become a generic "technical difficulties" reply.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from vatwatch import messages
from vatwatch.lifecycle.classifier import ValidityCheckError, ValidityErrorKind
from vatwatch.lifecycle.engine import ValidityChecker
from vatwatch.schemas.vat import VatIdentity
from vatwatch.store.requests import RequestStore

logger = logging.getLogger(__name__)

MIN_VAT_LENGTH = 3  # two-letter country code + at least one character

_UNAVAILABLE_KINDS = frozenset({ValidityErrorKind.SERVICE_UNAVAILABLE, ValidityErrorKind.ENDPOINT_UNAVAILABLE})


@dataclass(frozen=True)
class ServiceReply:
    """Definite outcome of a user request."""

    status: int
    message: str

    @property
    def success(self) -> bool:
        return self.status < 400


def ok(message: str) -> ServiceReply:
    return ServiceReply(200, message)


def client_error(message: str) -> ServiceReply:
    return ServiceReply(400, message)


def server_error(message: str) -> ServiceReply:
    return ServiceReply(500, message)


def parse_vat_number(raw: str) -> tuple[str, str]:
    """Split 'pl1234567890' into ('PL', '1234567890')."""
    raw = raw.strip()
    return raw[:2].upper(), raw[2:]


def validate_vat_input(owner_id: str | int | None, raw_vat: str | None) -> ServiceReply | None:
    """Return an error reply for unusable input, None when the input is acceptable."""
    if owner_id is None or str(owner_id).strip() == "":
        return client_error(messages.MISSING_OWNER)
    if not raw_vat or not raw_vat.strip():
        return client_error(messages.MISSING_VAT)
    if len(raw_vat.strip()) < MIN_VAT_LENGTH:
        return client_error(messages.VAT_TOO_SHORT)
    return None


def build_identity(owner_id: str | int, raw_vat: str) -> VatIdentity:
    country_code, vat_number = parse_vat_number(raw_vat)
    return VatIdentity(owner_id=str(owner_id), country_code=country_code, vat_number=vat_number)


class MonitoringService:
    """Admission of VAT numbers into monitoring, and the owner's view of them."""

    def __init__(
        self,
        store: RequestStore,
        checker: ValidityChecker,
        *,
        max_pending_per_owner: int = 10,
        expiration_days: int = 90,
    ) -> None:
        self._store = store
        self._checker = checker
        self._max_pending = max_pending_per_owner
        self._expiration_days = expiration_days

    async def _guarded(self, operation: str, fn: Callable[[], Awaitable[ServiceReply]]) -> ServiceReply:
        try:
            return await fn()
        except Exception:
            logger.exception("Error while handling %s", operation)
            return server_error(messages.TECHNICAL_DIFFICULTIES)

    async def submit(self, owner_id: str | int | None, raw_vat: str | None) -> ServiceReply:
        """Check a VAT number now and start monitoring it if VIES does not know it yet.

        The VIES check runs before the per-owner limit is looked at.
        """
        invalid = validate_vat_input(owner_id, raw_vat)
        if invalid is not None:
            return invalid
        assert owner_id is not None and raw_vat is not None  # noqa: S101

        identity = build_identity(owner_id, raw_vat)
        return await self._guarded("submit", lambda: self._submit(identity))

    async def _submit(self, identity: VatIdentity) -> ServiceReply:
        vat = identity.display
        try:
            result = await self._checker.check_validity(identity.country_code, identity.vat_number)
        except Exception as exc:  # every failure is classified
            return await self._submit_failed(identity, ValidityCheckError.from_exception(exc))

        if result.valid:
            await self._store.remove_pending(identity)
            return ok(messages.vat_is_valid(vat))

        if not await self._has_capacity(identity.owner_id):
            return client_error(messages.capacity_reached(self._max_pending))

        await self._store.try_add_unique_pending(identity)
        logger.info("VAT number %s registered for chat %s", vat, identity.owner_id)
        return ok(messages.vat_monitoring_started(vat, self._expiration_days))

    async def _submit_failed(self, identity: VatIdentity, error: ValidityCheckError) -> ServiceReply:
        vat = identity.display
        logger.warning("VIES check of %s failed (%s): %s", vat, error.kind.value, error.message)

        if error.kind is ValidityErrorKind.INVALID_INPUT:
            return client_error(messages.vat_invalid_input(vat))

        if not error.recoverable:
            return server_error(messages.vies_broken(vat))

        # Registered without a capacity check, so an owner at the limit can
        # go past it while VIES is failing.
        await self._store.try_add_unique_pending(identity)
        if error.kind in _UNAVAILABLE_KINDS:
            return server_error(messages.vies_unavailable(vat))
        return server_error(messages.vies_transient_problem(vat))

    async def _has_capacity(self, owner_id: str) -> bool:
        return await self._store.count_pending(owner_id) < self._max_pending

    async def remove(self, owner_id: str | int | None, raw_vat: str | None) -> ServiceReply:
        invalid = validate_vat_input(owner_id, raw_vat)
        if invalid is not None:
            return invalid
        assert owner_id is not None and raw_vat is not None  # noqa: S101

        identity = build_identity(owner_id, raw_vat)

        async def _remove() -> ServiceReply:
            await self._store.remove_pending(identity)
            return ok(messages.vat_unmonitored(identity.display))

        return await self._guarded("remove", _remove)

    async def remove_all(self, owner_id: str | int | None) -> ServiceReply:
        if owner_id is None or str(owner_id).strip() == "":
            return client_error(messages.MISSING_OWNER)

        async def _remove_all() -> ServiceReply:
            await self._store.remove_all_pending(str(owner_id))
            return ok(messages.ALL_UNMONITORED)

        return await self._guarded("remove_all", _remove_all)

    async def list_mine(self, owner_id: str | int | None) -> ServiceReply:
        if owner_id is None or str(owner_id).strip() == "":
            return client_error(messages.MISSING_OWNER)

        async def _list() -> ServiceReply:
            pending = await self._store.list_pending(str(owner_id))
            if not pending:
                return ok(messages.NOTHING_MONITORED)
            return ok(messages.monitored_list([p.display for p in pending]))

        return await self._guarded("list", _list)
