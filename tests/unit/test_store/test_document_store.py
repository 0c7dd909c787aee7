"""Unit tests for the document stores (memory and SQL backends)."""
import pytest

from rollcall.core.clock import ManualClock
from rollcall.core.exceptions import NotFoundError, QueryError, ValidationError
from rollcall.db.session import make_engine
from rollcall.store.base import (
    SERVER_TIMESTAMP,
    Index,
    Query,
    array_union,
    server_timestamp,
)
from rollcall.store.memory import MemoryDocumentStore
from rollcall.store.sql import SqlDocumentStore

INDEXES = [Index("attendance", ("ownerId",), "createdAt")]


@pytest.fixture(params=["memory", "sql"])
def store(request):
    clock = ManualClock(start_ms=1_000_000)
    if request.param == "memory":
        return MemoryDocumentStore(clock, indexes=INDEXES)
    sql_store = SqlDocumentStore(clock, make_engine("sqlite:///:memory:"), indexes=INDEXES)
    sql_store.create_all()
    return sql_store


@pytest.mark.unit
class TestReadsAndWrites:

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        snapshot = await store.get("sessions/nope")
        assert not snapshot.exists
        assert snapshot.id == "nope"
        assert snapshot.get("status", "x") == "x"

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        await store.set("sessions/s1", {"label": "CS101", "status": "active"})
        snapshot = await store.get("sessions/s1")
        assert snapshot.exists
        assert snapshot.data == {"label": "CS101", "status": "active"}

    @pytest.mark.asyncio
    async def test_set_replaces_without_merge(self, store):
        await store.set("sessions/s1", {"a": 1, "b": 2})
        await store.set("sessions/s1", {"a": 3})
        assert (await store.get("sessions/s1")).data == {"a": 3}

    @pytest.mark.asyncio
    async def test_set_merge_keeps_other_fields(self, store):
        await store.set("sessions/s1", {"a": 1, "b": 2})
        await store.set("sessions/s1", {"a": 3}, merge=True)
        assert (await store.get("sessions/s1")).data == {"a": 3, "b": 2}

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.update("sessions/gone", {"status": "ended"})

    @pytest.mark.asyncio
    async def test_add_assigns_id(self, store):
        doc_id = await store.add("attendance", {"ownerId": "o1"})
        assert doc_id
        assert (await store.get(f"attendance/{doc_id}")).get("ownerId") == "o1"

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.set("sessions/s1", {"a": 1})
        await store.delete("sessions/s1")
        assert not (await store.get("sessions/s1")).exists
        # Deleting twice is harmless
        await store.delete("sessions/s1")

    @pytest.mark.asyncio
    async def test_bad_path_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.set("sessions", {"a": 1})

    @pytest.mark.asyncio
    async def test_returned_data_is_a_copy(self, store):
        await store.set("sessions/s1", {"tags": ["a"]})
        snapshot = await store.get("sessions/s1")
        snapshot.data["tags"].append("b")
        assert (await store.get("sessions/s1")).get("tags") == ["a"]


@pytest.mark.unit
class TestSentinels:

    @pytest.mark.asyncio
    async def test_sentinels_in_one_write_share_an_instant(self, store):
        await store.set("sessions/s1", {
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
            "endsAt": server_timestamp(offset_ms=15 * 60_000),
        })
        data = (await store.get("sessions/s1")).data
        assert data["createdAt"] == data["updatedAt"] == store.clock.now_ms()
        assert data["endsAt"] == data["createdAt"] + 15 * 60_000

    @pytest.mark.asyncio
    async def test_server_timestamps_are_strictly_monotonic(self, store):
        await store.set("sessions/s1", {"updatedAt": SERVER_TIMESTAMP})
        first = (await store.get("sessions/s1")).get("updatedAt")
        await store.update("sessions/s1", {"updatedAt": SERVER_TIMESTAMP})
        second = (await store.get("sessions/s1")).get("updatedAt")
        # Same clock reading, still moves forward
        assert second > first

    @pytest.mark.asyncio
    async def test_array_union_skips_duplicates(self, store):
        await store.set("attendance/r1", {"hiddenBy": ["u1"]})
        await store.update("attendance/r1", {"hiddenBy": array_union("u1", "u2")})
        await store.update("attendance/r1", {"hiddenBy": array_union("u2")})
        assert (await store.get("attendance/r1")).get("hiddenBy") == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_array_union_on_missing_field(self, store):
        await store.set("attendance/r1", {})
        await store.update("attendance/r1", {"hiddenBy": array_union("u1")})
        assert (await store.get("attendance/r1")).get("hiddenBy") == ["u1"]


@pytest.mark.unit
class TestQueries:

    async def _seed(self, store):
        await store.set("attendance/r1", {"ownerId": "o1", "createdAt": 3, "ids": ["a", "b"]})
        await store.set("attendance/r2", {"ownerId": "o1", "createdAt": 1, "ids": ["b"]})
        await store.set("attendance/r3", {"ownerId": "o2", "createdAt": 2, "ids": ["a"]})
        await store.set("sessions/s1/participants/a", {"ownerId": "o1"})

    @pytest.mark.asyncio
    async def test_equality_filter(self, store):
        await self._seed(store)
        rows = await store.query(Query("attendance").where("ownerId", "==", "o1"))
        assert sorted(r.id for r in rows) == ["r1", "r2"]

    @pytest.mark.asyncio
    async def test_array_contains(self, store):
        await self._seed(store)
        rows = await store.query(Query("attendance").where("ids", "array-contains", "a"))
        assert sorted(r.id for r in rows) == ["r1", "r3"]

    @pytest.mark.asyncio
    async def test_ordered_limited_with_index(self, store):
        await self._seed(store)
        query = Query("attendance").where("ownerId", "==", "o1").order("createdAt", descending=True).limited(1)
        rows = await store.query(query)
        assert [r.id for r in rows] == ["r1"]

    @pytest.mark.asyncio
    async def test_ordered_query_without_index_raises(self, store):
        await self._seed(store)
        query = Query("attendance").where("ids", "array-contains", "a").order("createdAt")
        with pytest.raises(QueryError):
            await store.query(query)
        # The unordered form is always served
        assert len(await store.query(query.unordered())) == 2

    @pytest.mark.asyncio
    async def test_subcollection_is_separate(self, store):
        await self._seed(store)
        rows = await store.query(Query("sessions/s1/participants"))
        assert [r.id for r in rows] == ["a"]

    def test_unsupported_operator(self):
        with pytest.raises(ValidationError):
            Query("attendance").where("ownerId", "!=", "o1")


@pytest.mark.unit
class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_watch_document_delivers_initial_and_changes(self, store):
        seen = []
        subscription = await store.watch_document("sessions/s1", lambda snap: seen.append(snap.data))
        await store.set("sessions/s1", {"status": "active"})
        await store.update("sessions/s1", {"status": "ended"})
        await store.delete("sessions/s1")

        assert seen == [None, {"status": "active"}, {"status": "ended"}, None]
        subscription.unsubscribe()
        assert store.listener_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribed_listener_gets_nothing(self, store):
        seen = []
        subscription = await store.watch_document("sessions/s1", seen.append)
        subscription.unsubscribe()
        subscription.unsubscribe()
        await store.set("sessions/s1", {"a": 1})
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_watch_query_tracks_collection(self, store):
        seen = []

        async def on_change(rows):
            seen.append(sorted(r.id for r in rows))

        with await store.watch_query(Query("sessions/s1/participants"), on_change):
            await store.set("sessions/s1/participants/u1", {"status": "present"})
            await store.set("sessions/s1/participants/u2", {"status": "present"})
            # Other collections do not trigger the listener
            await store.set("sessions/s2/participants/u3", {"status": "present"})

        await store.set("sessions/s1/participants/u4", {"status": "present"})
        assert seen == [[], ["u1"], ["u1", "u2"]]

    @pytest.mark.asyncio
    async def test_unchanged_result_is_not_redelivered(self, store):
        seen = []
        query = Query("attendance").where("ownerId", "==", "o1")
        await store.watch_query(query, seen.append)
        await store.set("attendance/r9", {"ownerId": "someone-else"})
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_missing_index_goes_to_on_error(self, store):
        errors, seen = [], []
        query = Query("attendance").where("ids", "array-contains", "a").order("createdAt")
        subscription = await store.watch_query(query, seen.append, on_error=errors.append)
        assert len(errors) == 1
        assert isinstance(errors[0], QueryError)
        assert seen == []
        assert not subscription.active

    @pytest.mark.asyncio
    async def test_missing_index_without_on_error_raises(self, store):
        query = Query("attendance").where("ids", "array-contains", "a").order("createdAt")
        with pytest.raises(QueryError):
            await store.watch_query(query, lambda rows: None)

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_writer(self, store):
        def boom(snapshot):
            if snapshot.exists:
                raise RuntimeError("listener bug")

        await store.watch_document("sessions/s1", boom)
        await store.set("sessions/s1", {"a": 1})
        assert (await store.get("sessions/s1")).exists
