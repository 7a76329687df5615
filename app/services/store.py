"""
Document store contract consumed by the lifecycle engine.

The engine only talks to this interface: per-document CRUD, filtered queries,
multi-document atomic batches with compare-and-swap preconditions, and change
subscriptions with at-least-once delivery. ``SqlDocumentStore`` and
``FirestoreDocumentStore`` implement it.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

Filter = Tuple[str, str, Any]

FILTER_OPS = ("==", "!=", "<", "<=", ">", ">=", "in", "array_contains")

# Firestore rejects batches and transactions above 500 writes
MAX_BATCH_WRITES = 450


def doc_path(*parts: str) -> str:
    """Join path segments: doc_path("events", "e1", "WaitlistedEntrants")"""
    return "/".join(str(p).strip("/") for p in parts)


def split_path(path: str) -> Tuple[str, str]:
    """Return (collection path, document id) for a document path"""
    collection, _, doc_id = path.rpartition("/")
    return collection, doc_id


def new_id() -> str:
    return uuid.uuid4().hex


def chunked(items: Sequence[Any], size: int = MAX_BATCH_WRITES) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def field_value(data: Optional[Dict[str, Any]], name: str, default: Any = None) -> Any:
    """Read a field, treating missing and explicit null the same way"""
    if not data:
        return default
    value = data.get(name)
    return default if value is None else value


def matches(data: Dict[str, Any], filters: Iterable[Filter]) -> bool:
    """Evaluate query filters against a document body"""
    for name, op, expected in filters:
        if op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {op}")
        if name not in data or data[name] is None:
            if op == "!=" and expected is not None:
                continue
            return False
        actual = data[name]
        try:
            if op == "==" and actual != expected:
                return False
            if op == "!=" and actual == expected:
                return False
            if op == "<" and not actual < expected:
                return False
            if op == "<=" and not actual <= expected:
                return False
            if op == ">" and not actual > expected:
                return False
            if op == ">=" and not actual >= expected:
                return False
            if op == "in" and actual not in expected:
                return False
            if op == "array_contains" and (not isinstance(actual, list) or expected not in actual):
                return False
        except TypeError:
            return False
    return True


@dataclass
class DocumentSnapshot:
    path: str
    data: Optional[Dict[str, Any]] = None

    @property
    def id(self) -> str:
        return split_path(self.path)[1]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return dict(self.data) if self.data is not None else None

    def get(self, name: str, default: Any = None) -> Any:
        return field_value(self.data, name, default)


@dataclass
class DocumentChange:
    type: str  # ADDED, MODIFIED or REMOVED
    document: DocumentSnapshot


ChangeCallback = Callable[[List[DocumentChange]], Awaitable[None]]


class Subscription:
    """Handle returned by ``DocumentStore.subscribe``"""

    def __init__(self, collection: str, stop: Callable[[], None]):
        self.collection = collection
        self._stop = stop
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._stop()


@dataclass
class Expectation:
    path: str
    field: Optional[str] = None  # None means an existence check
    value: Any = None
    default: Any = None
    exists: bool = True

    def check(self, data: Optional[Dict[str, Any]]) -> Optional[Any]:
        """Return None when satisfied, otherwise the observed value"""
        if self.field is None:
            if self.exists:
                return None if data is not None else "<missing>"
            return None if data is None else "<exists>"
        actual = field_value(data, self.field, self.default)
        return None if actual == self.value else actual


@dataclass
class WriteOp:
    kind: str  # set, update, delete, increment
    path: str
    data: Dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class WriteBatch:
    """Atomic group of writes, optionally guarded by preconditions.

    Either every write is applied or none is. If any expectation does not hold
    at commit time, ``commit`` raises ``PreconditionFailed`` and nothing is
    written. Expectations are how latch flags and live-count checks become
    compare-and-swap writes instead of read-then-write.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self.operations: List[WriteOp] = []
        self.expectations: List[Expectation] = []

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        self.operations.append(WriteOp("set", path, dict(data), merge))
        return self

    def update(self, path: str, fields: Dict[str, Any]) -> "WriteBatch":
        self.operations.append(WriteOp("update", path, dict(fields)))
        return self

    def delete(self, path: str) -> "WriteBatch":
        self.operations.append(WriteOp("delete", path))
        return self

    def increment(self, path: str, name: str, delta: int) -> "WriteBatch":
        self.operations.append(WriteOp("increment", path, {name: delta}))
        return self

    def expect(self, path: str, name: str, value: Any, default: Any = None) -> "WriteBatch":
        self.expectations.append(Expectation(path, name, value, default))
        return self

    def expect_exists(self, path: str) -> "WriteBatch":
        self.expectations.append(Expectation(path))
        return self

    def expect_missing(self, path: str) -> "WriteBatch":
        self.expectations.append(Expectation(path, exists=False))
        return self

    def __len__(self) -> int:
        return len(self.operations)

    async def commit(self) -> None:
        if not self.operations:
            return
        await self._store.commit_batch(self)


class DocumentStore(ABC):
    """Persistent, queryable, subscribable document database"""

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot:
        ...

    @abstractmethod
    async def get_all(self, paths: Sequence[str]) -> List[DocumentSnapshot]:
        """Point lookups for many documents, returned in the order requested"""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[DocumentSnapshot]:
        ...

    @abstractmethod
    async def commit_batch(self, batch: WriteBatch) -> None:
        ...

    @abstractmethod
    def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription:
        """Deliver insert/update/delete changes for a collection.

        The first delivery reports every existing document as ADDED. Changes
        may be delivered more than once.
        """

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self.batch().set(path, data, merge).commit()

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        await self.batch().update(path, fields).commit()

    async def delete(self, path: str) -> None:
        await self.batch().delete(path).commit()

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        await self.set(doc_path(collection, doc_id), {**data, "id": doc_id})
        return doc_id

    async def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        return len(await self.query(collection, filters))

    async def close(self) -> None:
        return None
