"""
Abstract document store.

The only persistence boundary the chat core depends on: document CRUD,
field patches with atomic set-union/set-remove, simple queries and change
subscriptions. Implementations: MemoryStore and SqlStore.

Subscriptions deliver the current state on registration and again after
every write that changes it, until the returned Subscription is closed.
"""
from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Union

logger = logging.getLogger(__name__)


# --- Errors ---

class StoreError(Exception):
    pass


class DocumentNotFound(StoreError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class DocumentExists(StoreError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} already exists")
        self.collection = collection
        self.doc_id = doc_id


class BatchTooLarge(StoreError):
    pass


# --- Field patches ---

class ArrayUnion:
    """Append each value not already present. Applied atomically by the store."""

    def __init__(self, *values: Any):
        self.values = list(values)

    def apply(self, current: Any) -> list:
        result = list(current) if isinstance(current, list) else []
        for value in self.values:
            if value not in result:
                result.append(value)
        return result

    def __repr__(self) -> str:
        return f"ArrayUnion({self.values!r})"


class ArrayRemove:
    """Remove every occurrence of each value. Applied atomically by the store."""

    def __init__(self, *values: Any):
        self.values = list(values)

    def apply(self, current: Any) -> list:
        if not isinstance(current, list):
            return []
        return [item for item in current if item not in self.values]

    def __repr__(self) -> str:
        return f"ArrayRemove({self.values!r})"


def apply_patches(doc: dict, patches: dict[str, Any]) -> dict:
    """Return a copy of `doc` with field patches applied. Plain values replace."""
    updated = copy.deepcopy(doc)
    for name, patch in patches.items():
        if isinstance(patch, (ArrayUnion, ArrayRemove)):
            updated[name] = patch.apply(updated.get(name))
        else:
            updated[name] = copy.deepcopy(patch)
    return updated


# --- Queries ---

@dataclass(frozen=True)
class Eq:
    field: str
    value: Any

    def matches(self, doc: dict) -> bool:
        return doc.get(self.field) == self.value


@dataclass(frozen=True)
class ArrayContains:
    field: str
    value: Any

    def matches(self, doc: dict) -> bool:
        values = doc.get(self.field)
        return isinstance(values, list) and self.value in values


@dataclass(frozen=True)
class Query:
    filters: tuple = ()
    order_by: str | None = None
    descending: bool = False
    limit: int | None = None

    def where(self, *filters) -> Query:
        return Query(self.filters + tuple(filters), self.order_by, self.descending, self.limit)

    def run(self, rows: Iterable[tuple[int, dict]]) -> list[dict]:
        """Evaluate against (insertion seq, doc) pairs. Ties keep insertion order."""
        matched = [(seq, doc) for seq, doc in rows if all(f.matches(doc) for f in self.filters)]
        if self.order_by is not None:
            key = self.order_by
            matched.sort(key=lambda item: (_sort_key(item[1].get(key)), item[0]), reverse=self.descending)
        else:
            matched.sort(key=lambda item: item[0])
        docs = [copy.deepcopy(doc) for _, doc in matched]
        if self.limit is not None:
            docs = docs[: self.limit]
        return docs


def _sort_key(value: Any) -> tuple:
    # None sorts first; mixed types never compare directly
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


Target = Union[str, Query]
Listener = Callable[[Any], None]


@dataclass(frozen=True)
class BatchOp:
    collection: str
    doc_id: str
    patches: dict


# --- Subscriptions ---

@dataclass(eq=False)
class Subscription:
    collection: str
    target: Target
    on_change: Listener
    _hub: SubscriptionHub | None = field(default=None, repr=False)
    _last: Any = field(default=None, repr=False)
    _delivered: bool = field(default=False, repr=False)

    @property
    def active(self) -> bool:
        return self._hub is not None

    def close(self) -> None:
        """Release the registration. Further calls are no-ops."""
        hub, self._hub = self._hub, None
        if hub is not None:
            hub.remove(self)

    __call__ = close

    def deliver(self, snapshot: Any) -> None:
        if not self.active:
            return
        if self._delivered and snapshot == self._last:
            return
        self._last = snapshot
        self._delivered = True
        try:
            self.on_change(copy.deepcopy(snapshot))
        except Exception:
            # A failing listener must not break the writer that triggered it
            logger.exception("Subscription listener for %s failed", self.collection)


class SubscriptionHub:
    def __init__(self):
        self._subs: dict[str, list[Subscription]] = {}

    def add(self, sub: Subscription) -> None:
        sub._hub = self
        self._subs.setdefault(sub.collection, []).append(sub)

    def remove(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.collection, [])
        if sub in subs:
            subs.remove(sub)

    def for_collection(self, collection: str) -> list[Subscription]:
        return list(self._subs.get(collection, []))

    def count(self) -> int:
        return sum(len(subs) for subs in self._subs.values())


# --- Store ---

class Store(ABC):
    def __init__(self):
        self._hub = SubscriptionHub()

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict | None:
        """Document, or None when absent."""

    @abstractmethod
    async def put(self, collection: str, doc_id: str, document: dict) -> None:
        """Create or fully replace."""

    @abstractmethod
    async def create(self, collection: str, doc_id: str, document: dict) -> None:
        """Insert only if absent; raises DocumentExists otherwise."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, patches: dict) -> None:
        """Apply field patches atomically; raises DocumentNotFound."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove if present. Deleting a missing document is a no-op."""

    @abstractmethod
    async def query(self, collection: str, query: Query | None = None) -> list[dict]:
        ...

    @abstractmethod
    async def batch_update(self, ops: list[BatchOp], cap: int) -> None:
        """Apply all ops atomically or none. Raises BatchTooLarge past `cap`."""

    async def add(self, collection: str, document: dict, id_field: str = "id") -> str:
        """Create with the document's own id."""
        doc_id = str(document[id_field])
        await self.create(collection, doc_id, document)
        return doc_id

    async def close(self) -> None:
        for collection in list(self._hub._subs):
            for sub in self._hub.for_collection(collection):
                sub.close()

    @property
    def subscription_count(self) -> int:
        return self._hub.count()

    async def subscribe(self, collection: str, target: Target, on_change: Listener) -> Subscription:
        """
        Watch one document (target is an id; listener gets dict | None) or a
        query (listener gets list[dict]).
        """
        sub = Subscription(collection=collection, target=target, on_change=on_change)
        self._hub.add(sub)
        try:
            sub.deliver(await self._snapshot(collection, target))
        except BaseException:
            # Timed out or failed before the caller got a handle to close
            sub.close()
            raise
        return sub

    async def _snapshot(self, collection: str, target: Target) -> Any:
        if isinstance(target, Query):
            return await self.query(collection, target)
        return await self.get(collection, target)

    async def _publish(self, collection: str, doc_ids: Iterable[str] | None = None) -> None:
        # Query subscriptions on the collection are re-run on every write
        touched = set(doc_ids) if doc_ids is not None else None
        for sub in self._hub.for_collection(collection):
            if isinstance(sub.target, str) and touched is not None and sub.target not in touched:
                continue
            sub.deliver(await self._snapshot(collection, sub.target))

    @staticmethod
    def _check_batch(ops: list[BatchOp], cap: int) -> None:
        if len(ops) > cap:
            raise BatchTooLarge(f"Batch of {len(ops)} exceeds cap {cap}")
