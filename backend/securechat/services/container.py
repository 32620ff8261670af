"""Wires the chat core components from Settings."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from securechat.core.config import Settings
from securechat.crypto.envelope import CryptoEnvelope
from securechat.security.authenticator import Authenticator, LocalAuthenticator
from securechat.security.rate_limit import RateLimiter
from securechat.services.assistant import GeminiClient, GenerationClient
from securechat.services.audit import AuditLog
from securechat.services.identity import IdentityStore
from securechat.services.messages import MessageLog
from securechat.services.rooms import RoomRegistry
from securechat.services.session import SessionOrchestrator
from securechat.store.base import Store
from securechat.store.memory import MemoryStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> Store:
    if settings.store_backend == "memory":
        return MemoryStore()
    if settings.store_backend == "sql":
        # Imported here so the memory backend never loads SQLAlchemy
        from securechat.store.sql import SqlStore
        return SqlStore(settings.database_url)
    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")


@dataclass
class ChatCore:
    settings: Settings
    store: Store
    envelope: CryptoEnvelope
    audit: AuditLog
    authenticator: Authenticator
    identities: IdentityStore
    rooms: RoomRegistry
    messages: MessageLog
    assistant: GenerationClient | None = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: Store | None = None,
        authenticator: Authenticator | None = None,
        assistant: GenerationClient | None = None,
    ) -> ChatCore:
        """
        Missing collaborators come from settings. The assistant is only
        built when an API key is configured.
        """
        store = store or build_store(settings)
        authenticator = authenticator or LocalAuthenticator()
        audit = AuditLog(store, window=settings.audit_window)
        identities = IdentityStore(store, audit, authenticator, settings, limiter=RateLimiter())
        rooms = RoomRegistry(store, audit, identities)
        identities.rooms = rooms
        return cls(
            settings=settings,
            store=store,
            envelope=CryptoEnvelope.from_settings(settings),
            audit=audit,
            authenticator=authenticator,
            identities=identities,
            rooms=rooms,
            messages=MessageLog(store, read_cap=settings.read_batch_cap, window=settings.message_window),
            assistant=assistant or GeminiClient.from_settings(settings),
        )

    async def open(self) -> ChatCore:
        opener = getattr(self.store, "open", None)
        if opener is not None:
            await opener()
        logger.info("Chat core ready (store=%s)", type(self.store).__name__)
        return self

    async def close(self) -> None:
        await self.store.close()

    def session(self) -> SessionOrchestrator:
        return SessionOrchestrator(self)
