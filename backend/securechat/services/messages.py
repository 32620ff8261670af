"""
Per-room message log.

Messages live in the sub-collection `rooms/{room_id}/messages`, one document
per message, ordered by timestamp (ties keep insertion order). After
creation a message only changes by growth of `read_by`, and only through
mark_read's set-union batches.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable

from securechat.models.message import Message, MessageSender
from securechat.store.base import ArrayUnion, BatchOp, Query, Store, Subscription

logger = logging.getLogger(__name__)

DEFAULT_READ_CAP = 400
DEFAULT_WINDOW = 200


def messages_collection(room_id: str) -> str:
    return f"rooms/{room_id}/messages"


def _ordered(messages: Iterable[Message]) -> list[Message]:
    # sorted() is stable, so equal timestamps keep their given order
    return sorted(messages, key=lambda m: m.timestamp)


def needs_receipt(message: Message, reader_id: str) -> bool:
    return (
        message.sender == MessageSender.USER
        and message.sender_id != reader_id
        and message.sender_name != reader_id
        and reader_id not in message.read_by
    )


def read_receipt(message: Message, viewer_id: str) -> int | None:
    """Readers other than the viewer, for the viewer's own messages; None otherwise."""
    if message.sender != MessageSender.USER or message.sender_id != viewer_id:
        return None
    return len([uid for uid in message.read_by if uid != viewer_id])


class MessageLog:
    def __init__(self, store: Store, read_cap: int = DEFAULT_READ_CAP, window: int = DEFAULT_WINDOW):
        self.store = store
        self.read_cap = read_cap
        self.window = window

    async def append(self, room_id: str, message: Message) -> Message:
        await self.store.create(messages_collection(room_id), message.id, message.to_document())
        return message

    def _recent_query(self, limit: int | None) -> Query:
        # Newest N first, flipped back to ascending by the caller
        return Query(order_by="timestamp", descending=True, limit=limit or self.window)

    async def recent(self, room_id: str, limit: int | None = None) -> list[Message]:
        docs = await self.store.query(messages_collection(room_id), self._recent_query(limit))
        return [Message.from_document(doc) for doc in reversed(docs)]

    async def mark_read(self, room_id: str, reader_id: str, candidates: Iterable[Message]) -> int:
        """
        Add `reader_id` to read_by of the oldest qualifying messages, at most
        `read_cap` per call. Stops quietly at the cap; call again for the
        rest. Returns how many messages were updated.
        """
        pending = [m for m in _ordered(candidates) if needs_receipt(m, reader_id)][: self.read_cap]
        if not pending:
            return 0
        collection = messages_collection(room_id)
        ops = [BatchOp(collection, m.id, {"read_by": ArrayUnion(reader_id)}) for m in pending]
        await self.store.batch_update(ops, cap=self.read_cap)
        logger.debug("Marked %d messages read for %s in %s", len(ops), reader_id, room_id)
        return len(ops)

    async def watch(self, room_id: str, on_update: Callable[[list[Message]], None]) -> Subscription:
        """Live view of the latest `window` messages, ascending. Close the handle exactly once."""
        return await self.store.subscribe(
            messages_collection(room_id),
            self._recent_query(None),
            lambda docs: on_update([Message.from_document(doc) for doc in reversed(docs)]),
        )
