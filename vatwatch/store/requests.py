"""Request store: pending queue and error bin over SQLAlchemy.

Every public method runs in its own session and converts SQLAlchemy failures
into StoreError. The check-then-act sequences (unique insert, error
resolution, demotion) run inside a single transaction so that two callers
cannot both pass the "does not exist" check for the same identity; the
unique constraint on the pending table backstops concurrent processes.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Literal

from sqlalchemy import Select, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vatwatch.db.engine import Database
from vatwatch.errors import StoreError
from vatwatch.models.vat_request import PendingVatRequest, VatRequestError
from vatwatch.schemas.vat import (
    ErroredRequest,
    PendingRequest,
    ResolveOutcome,
    ResolveResult,
    VatIdentity,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_DAYS = 90


def _as_utc(value: datetime) -> datetime:
    """Some backends (SQLite) hand back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _parse_error_id(error_id: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(error_id, uuid.UUID):
        return error_id
    try:
        return uuid.UUID(str(error_id))
    except ValueError:
        return None


def _to_pending(row: PendingVatRequest) -> PendingRequest:
    return PendingRequest(
        owner_id=row.owner_id,
        country_code=row.country_code,
        vat_number=row.vat_number,
        expiration_date=_as_utc(row.expiration_date),
    )


def _to_errored(row: VatRequestError) -> ErroredRequest:
    return ErroredRequest(
        id=row.id,
        owner_id=row.owner_id,
        country_code=row.country_code,
        vat_number=row.vat_number,
        expiration_date=_as_utc(row.expiration_date),
        error_text=row.error_text,
    )


def _matches(model: type[PendingVatRequest] | type[VatRequestError], identity: VatIdentity) -> tuple:
    return (
        model.owner_id == identity.owner_id,
        model.country_code == identity.country_code,
        model.vat_number == identity.vat_number,
    )


def lock_errors_stmt(identity: VatIdentity) -> Select[tuple[uuid.UUID]]:
    """SELECT ... FOR UPDATE over an identity's error rows, in id order to avoid deadlocks."""
    return (
        select(VatRequestError.id)
        .where(*_matches(VatRequestError, identity))
        .order_by(VatRequestError.id)
        .with_for_update()
    )


class RequestStore:
    """CRUD and transactional transitions for pending and errored VAT requests."""

    def __init__(self, database: Database, expiration_days: int = DEFAULT_EXPIRATION_DAYS) -> None:
        self._db = database
        self._expiration_days = expiration_days

    @contextlib.asynccontextmanager
    async def _store_call(self, operation: str) -> AsyncGenerator[None, None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.error("Store operation %s failed: %s", operation, exc)
            raise StoreError(f"{operation} failed: {exc}") from exc

    def default_expiration(self) -> datetime:
        return datetime.now(UTC) + timedelta(days=self._expiration_days)

    # ── Pending requests ─────────────────────────────────────────────

    async def add_pending(
        self, identity: VatIdentity, expiration_date: datetime | None = None
    ) -> PendingRequest:
        """Insert a pending request; expiration defaults to now + configured days."""
        async with self._store_call("add_pending"), self._db.transaction() as session:
            return await self._insert_pending(session, identity, expiration_date)

    async def try_add_unique_pending(
        self, identity: VatIdentity, expiration_date: datetime | None = None
    ) -> PendingRequest | Literal[False]:
        """Insert unless a pending request for the identity exists; False in that case."""
        async with self._store_call("try_add_unique_pending"), self._db.transaction() as session:
            return await self._try_insert_unique_pending(session, identity, expiration_date)

    async def find_pending(self, identity: VatIdentity) -> PendingRequest | None:
        async with self._store_call("find_pending"), self._db.session() as session:
            row = await self._find_pending_row(session, identity)
            return _to_pending(row) if row is not None else None

    async def remove_pending(self, identity: VatIdentity) -> bool:
        """Delete the pending request; True iff a row was deleted."""
        async with self._store_call("remove_pending"), self._db.transaction() as session:
            return await self._delete_pending(session, identity)

    async def list_pending(self, owner_id: str | None = None) -> list[PendingRequest]:
        """All pending requests, or those of one owner, in insertion order."""
        stmt = select(PendingVatRequest).order_by(PendingVatRequest.created_at, PendingVatRequest.id)
        if owner_id is not None:
            stmt = stmt.where(PendingVatRequest.owner_id == owner_id)
        async with self._store_call("list_pending"), self._db.session() as session:
            result = await session.execute(stmt)
            return [_to_pending(row) for row in result.scalars().all()]

    async def count_pending(self, owner_id: str) -> int:
        stmt = select(func.count()).select_from(PendingVatRequest).where(PendingVatRequest.owner_id == owner_id)
        async with self._store_call("count_pending"), self._db.session() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def remove_all_pending(self, owner_id: str) -> bool:
        """Delete every pending request of an owner; True if anything was deleted."""
        stmt = delete(PendingVatRequest).where(PendingVatRequest.owner_id == owner_id)
        async with self._store_call("remove_all_pending"), self._db.transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount > 0  # type: ignore[attr-defined]

    async def update_identity(
        self, old_identity: VatIdentity, new_country_code: str, new_vat_number: str
    ) -> bool:
        """Correct the VAT number of a pending request. False if it does not exist."""
        async with self._store_call("update_identity"), self._db.transaction() as session:
            row = await self._find_pending_row(session, old_identity)
            if row is None:
                return False
            row.country_code = new_country_code
            row.vat_number = new_vat_number
            return True

    # ── Errored requests ─────────────────────────────────────────────

    async def add_error(self, pending: PendingRequest, error_text: str) -> ErroredRequest:
        async with self._store_call("add_error"), self._db.transaction() as session:
            return await self._insert_error(session, pending, error_text)

    async def find_error(self, error_id: str | uuid.UUID) -> ErroredRequest | None:
        """Look up an errored request; None for an unknown or malformed id."""
        error_uuid = _parse_error_id(error_id)
        if error_uuid is None:
            return None
        async with self._store_call("find_error"), self._db.session() as session:
            row = await session.get(VatRequestError, error_uuid)
            return _to_errored(row) if row is not None else None

    async def count_errors(self, identity: VatIdentity) -> int:
        async with self._store_call("count_errors"), self._db.session() as session:
            return await self._count_errors(session, identity)

    async def remove_error(self, error_id: str | uuid.UUID) -> bool:
        """Delete an errored request without resuming monitoring."""
        error_uuid = _parse_error_id(error_id)
        if error_uuid is None:
            return False
        stmt = delete(VatRequestError).where(VatRequestError.id == error_uuid)
        async with self._store_call("remove_error"), self._db.transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount > 0  # type: ignore[attr-defined]

    async def list_errors(self) -> list[ErroredRequest]:
        stmt = select(VatRequestError).order_by(VatRequestError.created_at, VatRequestError.id)
        async with self._store_call("list_errors"), self._db.session() as session:
            result = await session.execute(stmt)
            return [_to_errored(row) for row in result.scalars().all()]

    # ── Transitions ──────────────────────────────────────────────────

    async def resolve_error(self, error_id: str | uuid.UUID) -> ResolveResult:
        """Clear one errored request and resume monitoring once none are left.

        Steps, in one transaction:
        1. Load the error (NOT_FOUND if missing)
        2. Lock every error row of the same identity (FOR UPDATE), so that
           concurrent resolutions of its last errors run one after the other
           and exactly one of them sees zero errors left
        3. Delete it
        4. Count the errors left for the same identity (ERROR_RESOLVED if any)
        5. Re-insert the pending request with the original expiration date,
           unless one already exists (ALL_RESOLVED_AND_RESUMED / ALL_RESOLVED)
        """
        error_uuid = _parse_error_id(error_id)
        if error_uuid is None:
            return ResolveResult(ResolveOutcome.NOT_FOUND)

        async with self._store_call("resolve_error"), self._db.transaction() as session:
            row = await session.get(VatRequestError, error_uuid)
            if row is None:
                return ResolveResult(ResolveOutcome.NOT_FOUND)

            errored = _to_errored(row)
            locked = (await session.execute(lock_errors_stmt(errored))).scalars().all()
            if error_uuid not in locked:
                # resolved by a concurrent transaction while we waited for the lock
                return ResolveResult(ResolveOutcome.NOT_FOUND)

            await session.delete(row)
            await session.flush()

            if await self._count_errors(session, errored) > 0:
                return ResolveResult(ResolveOutcome.ERROR_RESOLVED, errored)

            resumed = await self._try_insert_unique_pending(
                session, errored.identity, errored.expiration_date
            )
            if resumed is False:
                return ResolveResult(ResolveOutcome.ALL_RESOLVED, errored)
            return ResolveResult(ResolveOutcome.ALL_RESOLVED_AND_RESUMED, errored)

    async def demote_to_error(self, pending: PendingRequest, error_text: str) -> ErroredRequest:
        """Move a pending request to the error bin in one transaction.

        The error row is written even if the pending row is already gone.
        """
        async with self._store_call("demote_to_error"), self._db.transaction() as session:
            if not await self._delete_pending(session, pending):
                logger.warning(
                    "Pending request %s for chat %s vanished before demotion",
                    pending.display,
                    pending.owner_id,
                )
            return await self._insert_error(session, pending, error_text)

    # ── Session-level helpers ────────────────────────────────────────

    async def _find_pending_row(self, session: AsyncSession, identity: VatIdentity) -> PendingVatRequest | None:
        result = await session.execute(select(PendingVatRequest).where(*_matches(PendingVatRequest, identity)))
        return result.scalar_one_or_none()

    async def _insert_pending(
        self, session: AsyncSession, identity: VatIdentity, expiration_date: datetime | None
    ) -> PendingRequest:
        row = PendingVatRequest(
            owner_id=identity.owner_id,
            country_code=identity.country_code,
            vat_number=identity.vat_number,
            expiration_date=expiration_date or self.default_expiration(),
        )
        session.add(row)
        await session.flush()
        return _to_pending(row)

    async def _try_insert_unique_pending(
        self, session: AsyncSession, identity: VatIdentity, expiration_date: datetime | None
    ) -> PendingRequest | Literal[False]:
        if await self._find_pending_row(session, identity) is not None:
            return False
        return await self._insert_pending(session, identity, expiration_date)

    async def _delete_pending(self, session: AsyncSession, identity: VatIdentity) -> bool:
        result = await session.execute(delete(PendingVatRequest).where(*_matches(PendingVatRequest, identity)))
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def _insert_error(self, session: AsyncSession, pending: PendingRequest, error_text: str) -> ErroredRequest:
        row = VatRequestError(
            owner_id=pending.owner_id,
            country_code=pending.country_code,
            vat_number=pending.vat_number,
            expiration_date=pending.expiration_date,
            error_text=error_text,
        )
        session.add(row)
        await session.flush()
        return _to_errored(row)

    async def _count_errors(self, session: AsyncSession, identity: VatIdentity) -> int:
        stmt = select(func.count()).select_from(VatRequestError).where(*_matches(VatRequestError, identity))
        return int((await session.execute(stmt)).scalar_one())
