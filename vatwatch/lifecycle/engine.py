"""Lifecycle engine: the VAT request state machine.

    Unmonitored -> Pending -> Valid    (row deleted, owner notified)
                           -> Expired  (row deleted, owner notified)
                           -> Errored  (demoted to the error bin)
    Errored -> Errored (more errors) | Pending (last error resolved)

The check cycle walks every pending request once. Recoverable VIES failures
stop the cycle (the next scheduled cycle is the retry); anything else parks
the request in the error bin and the cycle moves on.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol

from vatwatch import messages
from vatwatch.errors import NotificationError, StoreError
from vatwatch.lifecycle.classifier import ValidityCheckError, ValidityErrorKind
from vatwatch.schemas.vat import PendingRequest, ResolveOutcome, ResolveResult
from vatwatch.store.requests import RequestStore

logger = logging.getLogger(__name__)


class ValidityVerdict(Protocol):
    valid: bool


class ValidityChecker(Protocol):
    async def check_validity(self, country_code: str, vat_number: str) -> ValidityVerdict: ...


class Notifier(Protocol):
    async def notify(self, owner_id: str, text: str) -> None: ...

    async def notify_admin(self, text: str) -> None: ...


class StopReason(str, Enum):
    """Why a check cycle ended before the end of the batch."""

    EXPIRED = "expired"
    RECOVERABLE_ERROR = "recoverable_error"


@dataclass
class CycleReport:
    """Summary of one check cycle."""

    total: int = 0
    processed: int = 0
    valid: int = 0
    expired: int = 0
    demoted: int = 0
    stopped_by: StopReason | None = None
    error_kind: ValidityErrorKind | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LifecycleEngine:
    """Runs check cycles and error resolution over the request store."""

    def __init__(
        self,
        store: RequestStore,
        checker: ValidityChecker,
        notifier: Notifier,
        *,
        notify_admin_on_unrecoverable_errors: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._checker = checker
        self._notifier = notifier
        self._notify_admin = notify_admin_on_unrecoverable_errors
        self._now = clock

    # ── Check cycle ──────────────────────────────────────────────────

    async def run_check_cycle(self) -> CycleReport:
        """Check every pending request against VIES once.

        StoreError, and NotificationError raised while demoting, propagate
        and abort the rest of the cycle.
        """
        requests = await self._store.list_pending()
        report = CycleReport(total=len(requests))

        if not requests:
            logger.info("There are no VAT requests to process")
            return report

        logger.info("Processing %d VAT requests", len(requests))

        for pending in requests:
            report.processed += 1

            try:
                result = await self._checker.check_validity(pending.country_code, pending.vat_number)
            except Exception as exc:  # every failure is classified
                error = ValidityCheckError.from_exception(exc)
                if error.recoverable:
                    logger.warning(
                        "Recoverable VIES error (%s) on %s, stopping this cycle: %s",
                        error.kind.value,
                        pending.display,
                        error.message,
                    )
                    report.stopped_by = StopReason.RECOVERABLE_ERROR
                    report.error_kind = error.kind
                    break

                await self._demote(pending, error)
                report.demoted += 1
                continue

            if result.valid:
                logger.info("VAT number %s is valid, removing it from the queue", pending.display)
                await self._store.remove_pending(pending)
                await self._notify_quietly(pending.owner_id, messages.vat_now_valid(pending.display))
                report.valid += 1
            elif self._now() > pending.expiration_date:
                logger.info("VAT number %s is expired, removing it from the queue", pending.display)
                await self._store.remove_pending(pending)
                await self._notify_quietly(pending.owner_id, messages.vat_expired(pending.display))
                report.expired += 1
                # Ends the whole cycle, not just this request. Long-standing
                # behaviour; requests after this one wait for the next cycle.
                report.stopped_by = StopReason.EXPIRED
                break

        logger.info(
            "Check cycle done: %d/%d processed, %d valid, %d expired, %d demoted",
            report.processed,
            report.total,
            report.valid,
            report.expired,
            report.demoted,
        )
        return report

    async def _demote(self, pending: PendingRequest, error: ValidityCheckError) -> None:
        logger.error(
            "Unrecoverable error (%s) on %s, putting it into the error bin: %s",
            error.kind.value,
            pending.display,
            error.message,
        )
        await self._store.demote_to_error(pending, error.message)
        await self._notifier.notify(pending.owner_id, messages.monitoring_suspended(pending.display))

        if self._notify_admin:
            await self._notifier.notify_admin(
                messages.admin_unrecoverable_error(pending.display, pending.owner_id, error.message)
            )

    async def _notify_quietly(self, owner_id: str, text: str) -> None:
        """Notify after a committed transition; delivery failures are only logged."""
        try:
            await self._notifier.notify(owner_id, text)
        except NotificationError:
            logger.exception("Could not notify chat %s", owner_id)

    # ── Error resolution ─────────────────────────────────────────────

    async def resolve_error(self, error_id: str | uuid.UUID, *, silent: bool = False) -> ResolveResult:
        """Clear one errored request; resumes monitoring when it was the last one."""
        logger.info("Resolving error with id '%s'", error_id)

        result = await self._store.resolve_error(error_id)
        if result.outcome is ResolveOutcome.NOT_FOUND or result.request is None:
            logger.info("Error with id '%s' not found", error_id)
            return result

        logger.info("Error with id '%s' resolved (%s)", error_id, result.outcome.value)

        if result.outcome is ResolveOutcome.ALL_RESOLVED_AND_RESUMED and not silent:
            request = result.request
            await self._notify_quietly(request.owner_id, messages.monitoring_resumed(request.display))
            logger.info("Chat %s notified that monitoring of %s resumed", request.owner_id, request.display)

        return result

    async def resolve_all_errors(self, *, silent: bool = False) -> list[ResolveResult]:
        """Resolve every errored request in listing order, each in its own transaction."""
        results: list[ResolveResult] = []
        for errored in await self._store.list_errors():
            try:
                results.append(await self.resolve_error(errored.id, silent=silent))
            except StoreError:
                logger.exception("Failed to resolve error with id '%s'", errored.id)
        return results
