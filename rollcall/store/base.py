"""Real-time document store abstraction.

The engine never talks to a database directly. It reads and writes JSON-like
documents addressed by slash-separated paths (``sessions/abc``,
``sessions/abc/participants/u1``) and registers live listeners that fire on
every change. Concrete stores only implement four storage primitives; the
write semantics (merge, sentinels, server timestamps) and the listener fan-out
live here so every backend behaves the same.
"""
import copy
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from rollcall.core.clock import Clock, maybe_await
from rollcall.core.exceptions import NotFoundError, QueryError, ValidationError
from rollcall.core.logging_config import get_logger

logger = get_logger(__name__)

Listener = Callable[..., Any]


class ServerTimestamp:
    """Placeholder replaced by the store's own clock at write time."""

    __slots__ = ("offset_ms",)

    def __init__(self, offset_ms: int = 0):
        self.offset_ms = offset_ms

    def __repr__(self) -> str:
        return f"ServerTimestamp(offset_ms={self.offset_ms})"


class ArrayUnion:
    """Placeholder that appends values to an array field, skipping duplicates."""

    __slots__ = ("values",)

    def __init__(self, values: Iterable[Any]):
        self.values = list(values)


SERVER_TIMESTAMP = ServerTimestamp()


def server_timestamp(offset_ms: int = 0) -> ServerTimestamp:
    """Server time plus a fixed offset, resolved atomically with the write."""
    return ServerTimestamp(offset_ms)


def array_union(*values: Any) -> ArrayUnion:
    return ArrayUnion(values)


def collection_of(path: str) -> str:
    """``sessions/abc/participants/u1`` -> ``sessions/abc/participants``"""
    parts = path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2:
        raise ValidationError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1])


def document_id(path: str) -> str:
    return path.strip("/").rsplit("/", 1)[-1]


def collection_group(collection: str) -> str:
    """Last segment of a collection path, used to match declared indexes."""
    return collection.strip("/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class DocumentSnapshot:
    path: str
    data: Optional[Dict[str, Any]]

    @property
    def id(self) -> str:
        return document_id(self.path)

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, key: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(key, default)


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any

    OPERATORS = ("==", "array-contains")

    def __post_init__(self):
        if self.op not in self.OPERATORS:
            raise ValidationError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: Dict[str, Any]) -> bool:
        current = data.get(self.field)
        if self.op == "==":
            return current == self.value
        return isinstance(current, list) and self.value in current


@dataclass(frozen=True)
class Query:
    """Filtered, optionally ordered and limited view of one collection."""

    collection: str
    filters: Tuple[FieldFilter, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        return replace(self, filters=self.filters + (FieldFilter(field_name, op, value),))

    def order(self, field_name: str, descending: bool = False) -> "Query":
        return replace(self, order_by=field_name, descending=descending)

    def limited(self, count: int) -> "Query":
        return replace(self, limit=count)

    def unordered(self) -> "Query":
        return replace(self, order_by=None, descending=False)

    def apply(self, rows: List[DocumentSnapshot]) -> List[DocumentSnapshot]:
        rows = [row for row in rows if all(f.matches(row.data) for f in self.filters)]
        if self.order_by:
            present = [row for row in rows if row.data.get(self.order_by) is not None]
            missing = [row for row in rows if row.data.get(self.order_by) is None]
            present.sort(key=lambda row: row.data[self.order_by], reverse=self.descending)
            rows = present + missing
        if self.limit is not None:
            rows = rows[: self.limit]
        return rows


@dataclass(frozen=True)
class Index:
    """Declared composite index: equality/array fields plus one ordering field."""

    collection_group: str
    fields: Tuple[str, ...]
    order_by: str

    def serves(self, query: Query) -> bool:
        return (
            collection_group(query.collection) == self.collection_group
            and query.order_by == self.order_by
            and set(f.field for f in query.filters) <= set(self.fields)
        )


class Subscription:
    """Live listener registration. The owner must call ``unsubscribe``."""

    def __init__(self, unsubscribe_fn: Optional[Callable[[], None]] = None):
        self._unsubscribe_fn = unsubscribe_fn
        self._active = unsubscribe_fn is not None

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        fn, self._unsubscribe_fn = self._unsubscribe_fn, None
        if fn is not None:
            fn()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


@dataclass(eq=False)
class _DocumentWatch:
    path: str
    on_change: Listener
    active: bool = True


@dataclass(eq=False)
class _QueryWatch:
    query: Query
    on_change: Listener
    on_error: Optional[Listener] = None
    active: bool = True
    last: Optional[List[DocumentSnapshot]] = field(default=None)


class DocumentStore(ABC):
    """Base class for real-time document stores.

    Subclasses implement ``_load``, ``_save``, ``_remove`` and ``_scan``.
    Listener callbacks may be plain functions or coroutine functions; they run
    after the write has been applied and their failures are logged, never
    raised into the writer.
    """

    def __init__(self, clock: Clock, indexes: Optional[Sequence[Index]] = None):
        self.clock = clock
        # None means every ordered query is allowed
        self._indexes = list(indexes) if indexes is not None else None
        self._last_server_ms = 0
        self._doc_watches: Dict[str, List[_DocumentWatch]] = {}
        self._query_watches: List[_QueryWatch] = []

    # -- storage primitives -------------------------------------------------

    @abstractmethod
    async def _load(self, path: str) -> Optional[Dict[str, Any]]:
        """Return the stored document or None."""

    @abstractmethod
    async def _save(self, path: str, data: Dict[str, Any]) -> None:
        """Persist the full document at ``path``."""

    @abstractmethod
    async def _remove(self, path: str) -> bool:
        """Delete the document; return whether it existed."""

    @abstractmethod
    async def _scan(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Return ``(path, data)`` for every document directly in ``collection``."""

    # -- reads ----------------------------------------------------------------

    async def get(self, path: str) -> DocumentSnapshot:
        data = await self._load(path)
        return DocumentSnapshot(path, copy.deepcopy(data) if data is not None else None)

    async def query(self, query: Query) -> List[DocumentSnapshot]:
        self._check_index(query)
        return await self._run_query(query)

    async def _run_query(self, query: Query) -> List[DocumentSnapshot]:
        rows = [DocumentSnapshot(path, copy.deepcopy(data)) for path, data in await self._scan(query.collection)]
        return query.apply(rows)

    # -- writes ---------------------------------------------------------------

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        """Create or replace a document. With ``merge`` only the given fields change."""
        collection_of(path)
        existing = await self._load(path) if merge else None
        resolved = self._resolve(data, existing or {})
        if merge and existing is not None:
            merged = dict(existing)
            merged.update(resolved)
            resolved = merged
        await self._save(path, resolved)
        await self._notify(path, resolved)

    async def update(self, path: str, data: Dict[str, Any]) -> None:
        """Change fields of an existing document; NotFoundError if it is gone."""
        existing = await self._load(path)
        if existing is None:
            raise NotFoundError(f"No document at {path}")
        merged = dict(existing)
        merged.update(self._resolve(data, existing))
        await self._save(path, merged)
        await self._notify(path, merged)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document with a store-assigned id and return the id."""
        doc_id = uuid.uuid4().hex[:20]
        await self.set(f"{collection.strip('/')}/{doc_id}", data)
        return doc_id

    async def delete(self, path: str) -> None:
        existed = await self._remove(path)
        if existed:
            await self._notify(path, None)

    # -- subscriptions --------------------------------------------------------

    async def watch_document(self, path: str, on_change: Listener) -> Subscription:
        """Call ``on_change(snapshot)`` now and on every create, update or delete."""
        watch = _DocumentWatch(path, on_change)
        self._doc_watches.setdefault(path, []).append(watch)
        subscription = Subscription(lambda: self._drop_document_watch(watch))
        await self._deliver(on_change, await self.get(path))
        return subscription

    async def watch_query(
        self,
        query: Query,
        on_change: Listener,
        on_error: Optional[Listener] = None,
    ) -> Subscription:
        """Call ``on_change(snapshots)`` now and whenever a member is added or updated.

        If the query cannot be served, the error goes to ``on_error`` and an
        inactive subscription is returned. Without ``on_error`` it is raised.
        """
        try:
            self._check_index(query)
        except QueryError as exc:
            if on_error is None:
                raise
            logger.warning("query_subscription_failed", collection=query.collection, error=str(exc))
            await self._deliver(on_error, exc)
            return Subscription()

        watch = _QueryWatch(query, on_change, on_error)
        self._query_watches.append(watch)
        subscription = Subscription(lambda: self._drop_query_watch(watch))
        await self._refresh_query(watch)
        return subscription

    def ping(self) -> None:
        """Raise StoreUnavailable when the backend cannot be reached."""

    @property
    def listener_count(self) -> int:
        return sum(len(w) for w in self._doc_watches.values()) + len(self._query_watches)

    # -- internals ------------------------------------------------------------

    def _server_now(self) -> int:
        now = self.clock.now_ms()
        if now <= self._last_server_ms:
            now = self._last_server_ms + 1
        self._last_server_ms = now
        return now

    def _resolve(self, data: Dict[str, Any], existing: Dict[str, Any]) -> Dict[str, Any]:
        stamp: Optional[int] = None
        resolved: Dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, ServerTimestamp):
                if stamp is None:
                    stamp = self._server_now()
                resolved[key] = stamp + value.offset_ms
            elif isinstance(value, ArrayUnion):
                current = list(existing.get(key) or [])
                for item in value.values:
                    if item not in current:
                        current.append(item)
                resolved[key] = current
            else:
                resolved[key] = copy.deepcopy(value)
        return resolved

    def _check_index(self, query: Query) -> None:
        if not query.order_by or self._indexes is None:
            return
        if not any(index.serves(query) for index in self._indexes):
            raise QueryError(
                f"The query on {query.collection} ordered by {query.order_by} requires an index"
            )

    def _drop_document_watch(self, watch: _DocumentWatch) -> None:
        watch.active = False
        watches = self._doc_watches.get(watch.path, [])
        if watch in watches:
            watches.remove(watch)
        if not watches:
            self._doc_watches.pop(watch.path, None)

    def _drop_query_watch(self, watch: _QueryWatch) -> None:
        watch.active = False
        if watch in self._query_watches:
            self._query_watches.remove(watch)

    async def _notify(self, path: str, data: Optional[Dict[str, Any]]) -> None:
        for watch in list(self._doc_watches.get(path, [])):
            if watch.active:
                snapshot = DocumentSnapshot(path, copy.deepcopy(data) if data is not None else None)
                await self._deliver(watch.on_change, snapshot)

        parent = collection_of(path)
        for watch in list(self._query_watches):
            if watch.active and watch.query.collection == parent:
                await self._refresh_query(watch)

    async def _refresh_query(self, watch: _QueryWatch) -> None:
        rows = await self._run_query(watch.query)
        if watch.last is not None and rows == watch.last:
            return
        watch.last = rows
        await self._deliver(watch.on_change, rows)

    async def _deliver(self, listener: Listener, payload: Any) -> None:
        try:
            await maybe_await(listener(payload))
        except Exception as exc:
            logger.exception("store_listener_failed", error=str(exc))
