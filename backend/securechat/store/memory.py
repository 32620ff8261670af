"""Process-local Store. Used for development and tests."""
from __future__ import annotations

import asyncio
import copy
import itertools

from securechat.store.base import (
    BatchOp,
    DocumentExists,
    DocumentNotFound,
    Query,
    Store,
    apply_patches,
)


class MemoryStore(Store):
    def __init__(self, latency: float = 0.0):
        super().__init__()
        self.latency = latency
        self._data: dict[str, dict[str, tuple[int, dict]]] = {}
        self._seq = itertools.count(1)
        self._lock = asyncio.Lock()

    async def _io(self) -> None:
        # Every call is a suspension point, like a network round trip
        await asyncio.sleep(self.latency)

    def _collection(self, collection: str) -> dict[str, tuple[int, dict]]:
        return self._data.setdefault(collection, {})

    async def get(self, collection: str, doc_id: str) -> dict | None:
        await self._io()
        entry = self._collection(collection).get(doc_id)
        return copy.deepcopy(entry[1]) if entry else None

    async def put(self, collection: str, doc_id: str, document: dict) -> None:
        await self._io()
        async with self._lock:
            docs = self._collection(collection)
            seq = docs[doc_id][0] if doc_id in docs else next(self._seq)
            docs[doc_id] = (seq, copy.deepcopy(document))
        await self._publish(collection, [doc_id])

    async def create(self, collection: str, doc_id: str, document: dict) -> None:
        await self._io()
        async with self._lock:
            docs = self._collection(collection)
            if doc_id in docs:
                raise DocumentExists(collection, doc_id)
            docs[doc_id] = (next(self._seq), copy.deepcopy(document))
        await self._publish(collection, [doc_id])

    async def update(self, collection: str, doc_id: str, patches: dict) -> None:
        await self._io()
        async with self._lock:
            docs = self._collection(collection)
            if doc_id not in docs:
                raise DocumentNotFound(collection, doc_id)
            seq, doc = docs[doc_id]
            docs[doc_id] = (seq, apply_patches(doc, patches))
        await self._publish(collection, [doc_id])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._io()
        async with self._lock:
            removed = self._collection(collection).pop(doc_id, None)
        if removed is not None:
            await self._publish(collection, [doc_id])

    async def query(self, collection: str, query: Query | None = None) -> list[dict]:
        await self._io()
        query = query or Query()
        rows = list(self._collection(collection).values())
        return query.run(rows)

    async def batch_update(self, ops: list[BatchOp], cap: int) -> None:
        self._check_batch(ops, cap)
        if not ops:
            return
        await self._io()
        async with self._lock:
            staged = {}
            for op in ops:
                key = (op.collection, op.doc_id)
                if key in staged:
                    seq, doc = staged[key]
                else:
                    entry = self._collection(op.collection).get(op.doc_id)
                    if entry is None:
                        raise DocumentNotFound(op.collection, op.doc_id)
                    seq, doc = entry
                staged[key] = (seq, apply_patches(doc, op.patches))
            for (collection, doc_id), entry in staged.items():
                self._collection(collection)[doc_id] = entry
        touched: dict[str, list[str]] = {}
        for collection, doc_id in staged:
            touched.setdefault(collection, []).append(doc_id)
        for collection, doc_ids in touched.items():
            await self._publish(collection, doc_ids)
