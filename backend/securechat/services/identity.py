"""
User records, credentials, friend graph and login history.

IdentityStore is the only writer of user documents. Usernames are reserved
through a conditional insert into the `usernames` collection, so two
concurrent registrations of one name cannot both succeed.

The configured administrative identity never reaches the store: it is
matched literally in authenticate() and returned as an AdminIdentity.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

from securechat.core.config import Settings
from securechat.core.exceptions import (
    AlreadyFriends,
    ConnectivityError,
    InvalidCredentials,
    InvalidInput,
    RequestDuplicate,
    SelfRequest,
    TooManyAttempts,
    UsernameTaken,
    UserNotFound,
)
from securechat.core.results import Result
from securechat.core.security import is_admin_credentials
from securechat.models.common import now_ms
from securechat.models.room import Room
from securechat.models.system_log import LogLevel
from securechat.models.user import AdminIdentity, Identity, User
from securechat.security.authenticator import Authenticator, identifier_for
from securechat.security.rate_limit import RateLimiter
from securechat.security.sanitizer import InputSanitizer
from securechat.services.audit import AuditEvent, AuditLog
from securechat.store.base import (
    ArrayRemove,
    ArrayUnion,
    DocumentExists,
    Eq,
    Query,
    Store,
    StoreError,
    Subscription,
)

if TYPE_CHECKING:
    from securechat.services.rooms import RoomRegistry

logger = logging.getLogger(__name__)

USERS = "users"
USERNAMES = "usernames"


class IdentityStore:
    def __init__(
        self,
        store: Store,
        audit: AuditLog,
        authenticator: Authenticator,
        settings: Settings,
        rooms: RoomRegistry | None = None,
        limiter: RateLimiter | None = None,
    ):
        self.store = store
        self.audit = audit
        self.authenticator = authenticator
        self.settings = settings
        # Set by the container once the registry exists (they reference each other)
        self.rooms = rooms
        self.limiter = limiter or RateLimiter()

    # --- lookups ---

    async def get(self, user_id: str) -> User | None:
        doc = await self.store.get(USERS, user_id)
        return User.from_document(doc) if doc else None

    async def find_by_username(self, username: str) -> User | None:
        """Case-sensitive exact match."""
        docs = await self.store.query(USERS, Query(filters=(Eq("username", username),), limit=1))
        return User.from_document(docs[0]) if docs else None

    async def list_users(self) -> list[User]:
        docs = await self.store.query(USERS, Query(order_by="created_at"))
        return [User.from_document(doc) for doc in docs]

    async def friends_of(self, user: User) -> list[User]:
        friends = []
        for friend_id in user.friends:
            friend = await self.get(friend_id)
            if friend is not None:
                friends.append(friend)
        return friends

    async def watch(self, user_id: str, callback: Callable[[User | None], None]) -> Subscription:
        return await self.store.subscribe(
            USERS,
            user_id,
            lambda doc: callback(User.from_document(doc) if doc else None),
        )

    # --- registration & login ---

    async def register(self, username: str, password: str) -> Result[User]:
        """
        Reserve the name first, then create the account and the user record.
        A failure or cancellation after the reservation releases the name.
        """
        try:
            username = InputSanitizer.sanitize_username(username)
        except ValueError as exc:
            return Result.fail(InvalidInput(str(exc)))
        if not password:
            return Result.fail(InvalidInput("Password required"))

        if username == self.settings.ADMIN_USERNAME or await self.find_by_username(username):
            return Result.fail(UsernameTaken())

        try:
            await self.store.create(USERNAMES, username, {"uid": None, "reserved_at": now_ms()})
        except DocumentExists:
            return Result.fail(UsernameTaken())

        try:
            account = await self.authenticator.create_account(
                identifier_for(username, self.settings.identity_domain), password
            )
            await self.store.update(USERNAMES, username, {"uid": account.uid})
            user = User(id=account.uid, username=username, password_hash=account.verifier)
            await self.store.put(USERS, user.id, user.to_document())
        except BaseException:
            await self._release(username)
            raise

        self.authenticator.sign_in(user.id)
        await self.audit.record(AuditEvent.REGISTER, f"New user registered: {username}")
        logger.info("Registered user %s (%s)", username, user.id)
        return Result.ok(user)

    async def _release(self, username: str) -> None:
        # Shielded so a cancelled registration still frees the name
        try:
            await asyncio.shield(self.store.delete(USERNAMES, username))
        except (StoreError, ConnectivityError):
            logger.exception("Could not release username reservation %s", username)
        else:
            logger.info("Released username reservation %s", username)

    async def authenticate(self, username: str, password: str) -> Result[Identity]:
        if not username or not password:
            return Result.fail(InvalidInput("Enter a username and password."))

        if not self.limiter.is_allowed(username):
            return Result.fail(TooManyAttempts(self.limiter.get_retry_after(username)))

        if username == self.settings.ADMIN_USERNAME:
            if is_admin_credentials(self.settings, username, password):
                self.limiter.record_attempt(username, success=True)
                await self.audit.record(AuditEvent.LOGIN_SUCCESS, "Admin access granted", LogLevel.ALERT)
                return Result.ok(AdminIdentity(username=username))
            self.limiter.record_attempt(username, success=False)
            await self.audit.record(AuditEvent.LOGIN_FAIL, "Bad admin password", LogLevel.ALERT)
            return Result.fail(InvalidCredentials("Admin password is incorrect."))

        user = await self.find_by_username(username)
        if user is None:
            return Result.fail(UserNotFound())

        identifier = identifier_for(username, self.settings.identity_domain)
        if not await self.authenticator.verify_credentials(identifier, password, user.password_hash):
            self.limiter.record_attempt(username, success=False)
            await self.audit.record(AuditEvent.LOGIN_FAIL, f"Bad password for {username}", LogLevel.WARNING)
            return Result.fail(InvalidCredentials("Password is incorrect."))

        self.limiter.record_attempt(username, success=True)
        self.authenticator.sign_in(user.id)
        await self.audit.record(AuditEvent.LOGIN_SUCCESS, f"User {username} logged in")
        return Result.ok(user)

    async def record_login(self, identity: Identity | str) -> None:
        """Append `now` to login history. Never touches the store for the admin identity."""
        if isinstance(identity, AdminIdentity):
            return
        user_id = identity if isinstance(identity, str) else identity.id
        if user_id == AdminIdentity.id:
            return
        ts = now_ms()
        await self.store.update(USERS, user_id, {
            "last_login": ts,
            "login_history": ArrayUnion(ts),
        })

    # --- friends ---

    async def send_friend_request(self, from_id: str, to_username: str) -> Result[str]:
        target = await self.find_by_username(to_username)
        if target is None:
            return Result.fail(UserNotFound())
        if target.id == from_id:
            return Result.fail(SelfRequest())
        if from_id in target.friends:
            return Result.fail(AlreadyFriends())
        if from_id in target.friend_requests:
            return Result.fail(RequestDuplicate())

        await self.store.update(USERS, target.id, {"friend_requests": ArrayUnion(from_id)})
        await self.audit.record(AuditEvent.FRIEND_REQUEST, f"{from_id} -> {target.username}")
        return Result.ok("Request sent")

    async def resolve_friend_request(self, user_id: str, requester_id: str, accept: bool) -> Result[Room | None]:
        """
        Remove the pending request, then on accept make the friendship
        symmetric and ensure the pair's private room exists.

        The removal happens first and unconditionally, so resolving a stale
        or already-resolved request is harmless.
        """
        user = await self.get(user_id)
        if user is None:
            return Result.fail(UserNotFound())

        await self.store.update(USERS, user_id, {"friend_requests": ArrayRemove(requester_id)})
        if not accept:
            return Result.ok(None)

        if requester_id == user_id:
            return Result.fail(SelfRequest())
        requester = await self.get(requester_id)
        if requester is None:
            return Result.fail(UserNotFound())
        if self.rooms is None:
            raise RuntimeError("IdentityStore.rooms is not configured")

        await self.store.update(USERS, user_id, {"friends": ArrayUnion(requester_id)})
        await self.store.update(USERS, requester_id, {
            "friends": ArrayUnion(user_id),
            # A crossed request in the other direction is settled too
            "friend_requests": ArrayRemove(user_id),
        })

        room = await self.rooms.ensure_private(user_id, requester_id, f"{requester.username} & {user.username}")
        await self.audit.record(AuditEvent.FRIEND_ACCEPT, f"{user.username} accepted {requester.username}")
        return Result.ok(room)
