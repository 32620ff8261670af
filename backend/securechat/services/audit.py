"""
Audit trail (SystemLog records).

Write-only from the core. The only read contract is "most recent N, newest
first", used by the admin console.
"""
from __future__ import annotations

import logging
import secrets

from securechat.core.exceptions import ConnectivityError, UnsupportedOperation
from securechat.models.common import now_ms
from securechat.models.system_log import LogLevel, SystemLog
from securechat.store.base import Query, Store, StoreError, Subscription

logger = logging.getLogger(__name__)

COLLECTION = "logs"

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ALERT: logging.WARNING,
}


class AuditEvent:
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAIL = "LOGIN_FAIL"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    ROOM_CREATE = "ROOM_CREATE"
    ROOM_JOIN = "ROOM_JOIN"
    MESSAGE_SENT = "MESSAGE_SENT"
    ADMIN_COMMAND = "ADMIN_COMMAND"
    FRIEND_REQUEST = "FRIEND_REQUEST"
    FRIEND_ACCEPT = "FRIEND_ACCEPT"
    VOICE_CALL_START = "VOICE_CALL_START"
    VOICE_CALL_END = "VOICE_CALL_END"
    VOICE_CALL_ERROR = "VOICE_CALL_ERROR"
    API_ERROR = "API_ERROR"


class AuditLog:
    def __init__(self, store: Store, window: int = 100):
        self.store = store
        self.window = window

    async def record(self, event: str, details: str, level: LogLevel = LogLevel.INFO) -> SystemLog | None:
        """Append one record. A failed audit write is logged, never fatal to the caller."""
        ts = now_ms()
        entry = SystemLog(
            id=f"{ts}{secrets.token_hex(3)}",
            timestamp=ts,
            event=event,
            details=details,
            level=level,
        )
        logger.log(_PY_LEVELS[level], "audit %s: %s", event, details)
        try:
            await self.store.add(COLLECTION, entry.to_document())
        except (StoreError, ConnectivityError):
            logger.warning("Could not persist audit record %s", event, exc_info=True)
            return None
        return entry

    def _query(self, limit: int | None) -> Query:
        return Query(order_by="timestamp", descending=True, limit=limit or self.window)

    async def recent(self, limit: int | None = None) -> list[SystemLog]:
        docs = await self.store.query(COLLECTION, self._query(limit))
        return [SystemLog.from_document(doc) for doc in docs]

    async def watch(self, callback, limit: int | None = None) -> Subscription:
        return await self.store.subscribe(
            COLLECTION,
            self._query(limit),
            lambda docs: callback([SystemLog.from_document(doc) for doc in docs]),
        )

    async def clear(self) -> None:
        # The store contract has no collection delete; say so rather than
        # pretend the records are gone.
        raise UnsupportedOperation(
            "Clearing audit logs is not supported by the backing store; no records were deleted."
        )
