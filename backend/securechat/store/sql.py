"""
SQLAlchemy-backed Store: every document is a JSON row in one table.

Writes are serialised by a process-wide lock and each runs in a single
transaction, so set-union/set-remove patches never lose concurrent updates
from this process. Blocking database calls run in worker threads.

Queries load the whole collection and filter in Python with Query.run, so
filter semantics match MemoryStore exactly. Each write re-runs every query
subscription on its collection. Fine for chat-sized collections; a deployment
with large collections should index and push filters into SQL.
"""
from __future__ import annotations

import asyncio
import copy
import threading

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from securechat.core.exceptions import ConnectivityError
from securechat.db.init_db import init_db
from securechat.db.session import build_engine, build_sessionmaker
from securechat.models.document import DocumentRow
from securechat.store.base import (
    BatchOp,
    DocumentExists,
    DocumentNotFound,
    Query,
    Store,
    apply_patches,
)


class SqlStore(Store):
    def __init__(self, database_url: str):
        super().__init__()
        self.engine = build_engine(database_url)
        self._sessions = build_sessionmaker(self.engine)
        self._write_lock = threading.Lock()

    async def open(self) -> None:
        await self._run(init_db, self.engine)

    async def close(self) -> None:
        await super().close()
        self.engine.dispose()

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except OperationalError as exc:
            raise ConnectivityError(f"Database unavailable: {exc.orig}") from exc

    @staticmethod
    def _row(db: Session, collection: str, doc_id: str) -> DocumentRow | None:
        stmt = select(DocumentRow).where(
            DocumentRow.collection == collection,
            DocumentRow.doc_id == doc_id,
        )
        return db.execute(stmt).scalar_one_or_none()

    # --- Store API ---

    async def get(self, collection: str, doc_id: str) -> dict | None:
        return await self._run(self._get, collection, doc_id)

    async def put(self, collection: str, doc_id: str, document: dict) -> None:
        await self._run(self._put, collection, doc_id, document)
        await self._publish(collection, [doc_id])

    async def create(self, collection: str, doc_id: str, document: dict) -> None:
        await self._run(self._create, collection, doc_id, document)
        await self._publish(collection, [doc_id])

    async def update(self, collection: str, doc_id: str, patches: dict) -> None:
        await self._run(self._update, collection, doc_id, patches)
        await self._publish(collection, [doc_id])

    async def delete(self, collection: str, doc_id: str) -> None:
        if await self._run(self._delete, collection, doc_id):
            await self._publish(collection, [doc_id])

    async def query(self, collection: str, query: Query | None = None) -> list[dict]:
        return await self._run(self._query, collection, query or Query())

    async def batch_update(self, ops: list[BatchOp], cap: int) -> None:
        self._check_batch(ops, cap)
        if not ops:
            return
        await self._run(self._batch_update, ops)
        touched: dict[str, list[str]] = {}
        for op in ops:
            touched.setdefault(op.collection, []).append(op.doc_id)
        for collection, doc_ids in touched.items():
            await self._publish(collection, doc_ids)

    # --- blocking implementations ---

    def _get(self, collection: str, doc_id: str) -> dict | None:
        with self._sessions() as db:
            row = self._row(db, collection, doc_id)
            return copy.deepcopy(row.data) if row else None

    def _put(self, collection: str, doc_id: str, document: dict) -> None:
        with self._write_lock, self._sessions() as db:
            row = self._row(db, collection, doc_id)
            if row is None:
                db.add(DocumentRow(collection=collection, doc_id=doc_id, data=copy.deepcopy(document)))
            else:
                row.data = copy.deepcopy(document)
            db.commit()

    def _create(self, collection: str, doc_id: str, document: dict) -> None:
        with self._write_lock, self._sessions() as db:
            if self._row(db, collection, doc_id) is not None:
                raise DocumentExists(collection, doc_id)
            db.add(DocumentRow(collection=collection, doc_id=doc_id, data=copy.deepcopy(document)))
            try:
                db.commit()
            except IntegrityError as exc:
                # Another process won the insert
                db.rollback()
                raise DocumentExists(collection, doc_id) from exc

    def _update(self, collection: str, doc_id: str, patches: dict) -> None:
        with self._write_lock, self._sessions() as db:
            row = self._row(db, collection, doc_id)
            if row is None:
                raise DocumentNotFound(collection, doc_id)
            row.data = apply_patches(row.data, patches)
            db.commit()

    def _delete(self, collection: str, doc_id: str) -> bool:
        with self._write_lock, self._sessions() as db:
            row = self._row(db, collection, doc_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def _query(self, collection: str, query: Query) -> list[dict]:
        # Full collection scan; see module docstring
        with self._sessions() as db:
            stmt = select(DocumentRow.seq, DocumentRow.data).where(DocumentRow.collection == collection)
            rows = db.execute(stmt).all()
            return query.run((seq, data) for seq, data in rows)

    def _batch_update(self, ops: list[BatchOp]) -> None:
        with self._write_lock, self._sessions() as db:
            rows: dict[tuple[str, str], DocumentRow] = {}
            for op in ops:
                key = (op.collection, op.doc_id)
                row = rows.get(key) or self._row(db, op.collection, op.doc_id)
                if row is None:
                    db.rollback()
                    raise DocumentNotFound(op.collection, op.doc_id)
                row.data = apply_patches(row.data, op.patches)
                rows[key] = row
            db.commit()
