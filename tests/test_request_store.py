"""Tests for the request store against an in-memory SQLite database.

Covers:
- Pending CRUD, per-owner counting and listing
- Unique insertion (no duplicate pending rows per identity)
- Identity correction
- Error bin: add, find (bad ids), remove, list
- resolve_error outcomes, including resume with the original expiration
- demote_to_error, also when the pending row is already gone
- SQLAlchemy failures surface as StoreError
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.dialects import postgresql

from vatwatch.db.engine import Database
from vatwatch.errors import StoreError
from vatwatch.schemas.vat import PendingRequest, ResolveOutcome, VatIdentity
from vatwatch.store.requests import RequestStore, lock_errors_stmt

# ── Helpers ──────────────────────────────────────────────────────────


def _make_identity(owner_id: str = "123", vat: str = "XX123") -> VatIdentity:
    return VatIdentity(owner_id=owner_id, country_code=vat[:2], vat_number=vat[2:])


def _make_pending(owner_id: str = "123", vat: str = "XX123", days: int = 30) -> PendingRequest:
    return PendingRequest(
        owner_id=owner_id,
        country_code=vat[:2],
        vat_number=vat[2:],
        expiration_date=datetime(2030, 1, 1, tzinfo=UTC) + timedelta(days=days),
    )


# ── Pending requests ─────────────────────────────────────────────────


class TestPending:
    @pytest.mark.asyncio()
    async def test_add_uses_default_expiration(self, store: RequestStore):
        before = datetime.now(UTC)
        added = await store.add_pending(_make_identity())

        assert added.display == "XX123"
        assert added.owner_id == "123"
        assert before + timedelta(days=90) <= added.expiration_date <= datetime.now(UTC) + timedelta(days=90)

    @pytest.mark.asyncio()
    async def test_add_keeps_explicit_expiration(self, store: RequestStore):
        expiration = datetime(2031, 5, 1, 12, 0, tzinfo=UTC)
        await store.add_pending(_make_identity(), expiration)

        found = await store.find_pending(_make_identity())
        assert found is not None
        assert found.expiration_date == expiration

    @pytest.mark.asyncio()
    async def test_find_missing(self, store: RequestStore):
        assert await store.find_pending(_make_identity()) is None

    @pytest.mark.asyncio()
    async def test_remove(self, store: RequestStore):
        await store.add_pending(_make_identity())

        assert await store.remove_pending(_make_identity()) is True
        assert await store.remove_pending(_make_identity()) is False
        assert await store.find_pending(_make_identity()) is None

    @pytest.mark.asyncio()
    async def test_count_and_list_per_owner(self, store: RequestStore):
        await store.add_pending(_make_identity("1", "PL111"))
        await store.add_pending(_make_identity("1", "DE222"))
        await store.add_pending(_make_identity("2", "FR333"))

        assert await store.count_pending("1") == 2
        assert await store.count_pending("2") == 1
        assert await store.count_pending("3") == 0
        assert [p.display for p in await store.list_pending("1")] == ["PL111", "DE222"]
        assert len(await store.list_pending()) == 3

    @pytest.mark.asyncio()
    async def test_remove_all(self, store: RequestStore):
        await store.add_pending(_make_identity("1", "PL111"))
        await store.add_pending(_make_identity("1", "DE222"))
        await store.add_pending(_make_identity("2", "FR333"))

        assert await store.remove_all_pending("1") is True
        assert await store.count_pending("1") == 0
        assert await store.count_pending("2") == 1
        assert await store.remove_all_pending("1") is False


class TestUniquePending:
    @pytest.mark.asyncio()
    async def test_second_insert_is_refused(self, store: RequestStore):
        first = await store.try_add_unique_pending(_make_identity())
        second = await store.try_add_unique_pending(_make_identity())

        assert first is not False
        assert second is False
        assert await store.count_pending("123") == 1

    @pytest.mark.asyncio()
    async def test_same_vat_other_owner_is_allowed(self, store: RequestStore):
        assert await store.try_add_unique_pending(_make_identity("1")) is not False
        assert await store.try_add_unique_pending(_make_identity("2")) is not False

    @pytest.mark.asyncio()
    async def test_plain_add_hits_unique_constraint(self, store: RequestStore):
        await store.add_pending(_make_identity())
        with pytest.raises(StoreError):
            await store.add_pending(_make_identity())


class TestUpdateIdentity:
    @pytest.mark.asyncio()
    async def test_updates_vat_number(self, store: RequestStore):
        expiration = datetime(2031, 1, 1, tzinfo=UTC)
        await store.add_pending(_make_identity(vat="XX123"), expiration)

        assert await store.update_identity(_make_identity(vat="XX123"), "YY", "456") is True

        assert await store.find_pending(_make_identity(vat="XX123")) is None
        moved = await store.find_pending(_make_identity(vat="YY456"))
        assert moved is not None
        assert moved.expiration_date == expiration

    @pytest.mark.asyncio()
    async def test_missing_request(self, store: RequestStore):
        assert await store.update_identity(_make_identity(), "YY", "456") is False


# ── Error bin ────────────────────────────────────────────────────────


class TestErrors:
    @pytest.mark.asyncio()
    async def test_add_and_find(self, store: RequestStore):
        added = await store.add_error(_make_pending(), "Oops")

        found = await store.find_error(added.id)
        assert found is not None
        assert found.error_text == "Oops"
        assert found.expiration_date == _make_pending().expiration_date

        assert await store.find_error(str(added.id)) is not None

    @pytest.mark.asyncio()
    async def test_find_malformed_id(self, store: RequestStore):
        assert await store.find_error("not-a-uuid") is None

    @pytest.mark.asyncio()
    async def test_find_unknown_id(self, store: RequestStore):
        assert await store.find_error(uuid.uuid4()) is None

    @pytest.mark.asyncio()
    async def test_count(self, store: RequestStore):
        await store.add_error(_make_pending(), "one")
        await store.add_error(_make_pending(), "two")
        await store.add_error(_make_pending(vat="DE999"), "other")

        assert await store.count_errors(_make_identity()) == 2

    @pytest.mark.asyncio()
    async def test_remove(self, store: RequestStore):
        added = await store.add_error(_make_pending(), "Oops")

        assert await store.remove_error(added.id) is True
        assert await store.remove_error(added.id) is False
        assert await store.remove_error("garbage") is False
        assert await store.list_errors() == []
        # removing an error never resumes monitoring
        assert await store.find_pending(_make_identity()) is None


# ── resolve_error ────────────────────────────────────────────────────


class TestResolveError:
    @pytest.mark.asyncio()
    async def test_not_found_changes_nothing(self, store: RequestStore):
        await store.add_error(_make_pending(), "Oops")

        result = await store.resolve_error(uuid.uuid4())

        assert result.outcome is ResolveOutcome.NOT_FOUND
        assert result.request is None
        assert len(await store.list_errors()) == 1
        assert await store.list_pending() == []

    @pytest.mark.asyncio()
    async def test_malformed_id_is_not_found(self, store: RequestStore):
        result = await store.resolve_error("nope")
        assert result.outcome is ResolveOutcome.NOT_FOUND

    @pytest.mark.asyncio()
    async def test_last_error_resumes_with_original_expiration(self, store: RequestStore):
        pending = _make_pending()
        error = await store.add_error(pending, "Oops")

        result = await store.resolve_error(error.id)

        assert result.outcome is ResolveOutcome.ALL_RESOLVED_AND_RESUMED
        assert result.request is not None
        assert result.request.id == error.id
        resumed = await store.find_pending(pending)
        assert resumed is not None
        assert resumed.expiration_date == pending.expiration_date
        assert await store.list_errors() == []

    @pytest.mark.asyncio()
    async def test_n_errors_resume_exactly_once(self, store: RequestStore):
        errors = [await store.add_error(_make_pending(), f"err {i}") for i in range(3)]

        outcomes = [(await store.resolve_error(e.id)).outcome for e in errors]

        assert outcomes == [
            ResolveOutcome.ERROR_RESOLVED,
            ResolveOutcome.ERROR_RESOLVED,
            ResolveOutcome.ALL_RESOLVED_AND_RESUMED,
        ]
        assert await store.count_pending("123") == 1
        assert await store.count_errors(_make_identity()) == 0

    @pytest.mark.asyncio()
    async def test_no_duplicate_when_already_pending(self, store: RequestStore):
        """User re-registered the number while it sat in the error bin."""
        error = await store.add_error(_make_pending(), "Oops")
        await store.add_pending(_make_identity())

        result = await store.resolve_error(error.id)

        assert result.outcome is ResolveOutcome.ALL_RESOLVED
        assert await store.count_pending("123") == 1


class TestResolveLocking:
    def test_lock_statement_is_for_update(self):
        sql = str(lock_errors_stmt(_make_identity()).compile(dialect=postgresql.dialect()))

        assert "FOR UPDATE" in sql
        assert "ORDER BY vat_request_errors.id" in sql

    @pytest.mark.asyncio()
    async def test_lock_covers_exactly_the_identity_rows(self, store: RequestStore, database: Database):
        first = await store.add_error(_make_pending(), "one")
        second = await store.add_error(_make_pending(), "two")
        await store.add_error(_make_pending(vat="DE999"), "other")
        await store.add_error(_make_pending(owner_id="456"), "other owner")

        async with database.transaction() as session:
            locked = (await session.execute(lock_errors_stmt(_make_identity()))).scalars().all()

        assert sorted(locked) == sorted([first.id, second.id])

    @pytest.mark.asyncio()
    async def test_last_two_errors_resume_once(self, store: RequestStore):
        """Resolving both remaining errors leaves exactly one pending row, whatever the order."""
        first = await store.add_error(_make_pending(), "one")
        second = await store.add_error(_make_pending(), "two")

        outcomes = {(await store.resolve_error(e.id)).outcome for e in (second, first)}

        assert outcomes == {ResolveOutcome.ERROR_RESOLVED, ResolveOutcome.ALL_RESOLVED_AND_RESUMED}
        assert await store.count_pending("123") == 1
        assert await store.list_errors() == []


# ── demote_to_error ──────────────────────────────────────────────────


class TestDemote:
    @pytest.mark.asyncio()
    async def test_moves_pending_to_error_bin(self, store: RequestStore):
        pending = await store.add_pending(_make_identity())

        errored = await store.demote_to_error(pending, "Oops")

        assert await store.find_pending(pending) is None
        assert errored.error_text == "Oops"
        assert errored.expiration_date == pending.expiration_date
        assert [e.id for e in await store.list_errors()] == [errored.id]

    @pytest.mark.asyncio()
    async def test_error_row_written_when_pending_vanished(self, store: RequestStore):
        errored = await store.demote_to_error(_make_pending(), "Oops")

        assert await store.find_error(errored.id) is not None
        assert await store.list_pending() == []


# ── Failures ─────────────────────────────────────────────────────────


class TestStoreFailures:
    @pytest.mark.asyncio()
    async def test_sqlalchemy_error_becomes_store_error(self):
        """Tables never created, so every query fails inside SQLAlchemy."""
        db = Database("sqlite+aiosqlite://")
        await db.connect()
        try:
            store = RequestStore(db)
            with pytest.raises(StoreError, match="list_pending"):
                await store.list_pending()
        finally:
            await db.close()

    @pytest.mark.asyncio()
    async def test_unconnected_database(self):
        store = RequestStore(Database("sqlite+aiosqlite://"))
        with pytest.raises(RuntimeError, match="not connected"):
            await store.count_pending("1")
