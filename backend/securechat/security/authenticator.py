"""
Identity provider boundary.

The chat core never checks passwords itself; it asks an Authenticator, which
issues an opaque uid per account and an opaque verifier that the core stores
on the user record. Usernames are mapped to the provider's identifier
format with `identifier_for`.

The authenticator is shared by every session of a process, so it holds no
"current user". Auth state events are account level: `sign_in(uid)` after a
successful credential check and `revoke(uid)` when every session of that
account must end. Each session keeps its own uid and listens for revocation.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from securechat.core.security import hash_password, verify_password

logger = logging.getLogger(__name__)

# (uid, signed_in)
AuthListener = Callable[[str, bool], None]


@dataclass(frozen=True)
class Account:
    uid: str
    identifier: str
    verifier: str


def identifier_for(username: str, domain: str) -> str:
    return f"{username}@{domain}"


class Authenticator(ABC):
    def __init__(self):
        self._listeners: list[AuthListener] = []

    @abstractmethod
    async def create_account(self, identifier: str, password: str) -> Account:
        ...

    @abstractmethod
    async def verify_credentials(self, identifier: str, password: str, verifier: str) -> bool:
        ...

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener for (uid, signed_in) events. Returns a disposer."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, uid: str, signed_in: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(uid, signed_in)
            except Exception:
                logger.exception("Auth state listener failed")

    def sign_in(self, uid: str) -> None:
        self._notify(uid, True)

    def revoke(self, uid: str) -> None:
        """End every live session of `uid`, e.g. after the account is disabled."""
        logger.info("Revoking sessions of %s", uid)
        self._notify(uid, False)


class LocalAuthenticator(Authenticator):
    """Argon2 verifiers, uuid4 account ids. Hashing runs off the event loop."""

    async def create_account(self, identifier: str, password: str) -> Account:
        verifier = await asyncio.to_thread(hash_password, password)
        account = Account(uid=uuid.uuid4().hex, identifier=identifier, verifier=verifier)
        return account

    async def verify_credentials(self, identifier: str, password: str, verifier: str) -> bool:
        return await asyncio.to_thread(verify_password, password, verifier)
