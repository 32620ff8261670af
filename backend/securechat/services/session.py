"""
Per-client session orchestration.

States:

    ANONYMOUS -> AUTHENTICATING -> AUTHENTICATED <-> IN_ROOM
                       |                 |
                       +-> ANONYMOUS     +-> ANONYMOUS (logout)

While authenticated the session keeps live subscriptions to the lobby of
group rooms, to the user's own record and to the rooms the user belongs to.
The admin identity has no record and no memberships; its rooms list is the
lobby. A regular session also listens to the authenticator and ends when
its account is revoked. While in a room it also watches that room and its
messages. A room snapshot showing the user kicked or banned, or the room
gone, evicts the session back to AUTHENTICATED with a Notice.

The session owns no persistent state. Everything in SessionView is the most
recent snapshot pushed by a subscription.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable

from securechat.core.exceptions import (
    AccessDenied,
    ExternalServiceError,
    InvalidInput,
    Muted,
    StoreTimeout,
    UnknownCommand,
)
from securechat.core.results import Result
from securechat.models.message import Message, MessageSender, MessageType, message_type_for_mime
from securechat.models.room import Room
from securechat.models.system_log import LogLevel
from securechat.models.user import AdminIdentity, Identity, User
from securechat.security.sanitizer import InputSanitizer
from securechat.services.assistant import InlineMedia
from securechat.services.audit import AuditEvent
from securechat.services.commands import (
    AssistantPrompt,
    ModerationCommand,
    UnrecognisedCommand,
    parse_outgoing,
)
from securechat.services.messages import needs_receipt
from securechat.store.base import Subscription

if TYPE_CHECKING:
    from securechat.services.container import ChatCore

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024 * 1024  # 10 GiB
MAX_INLINE_MEDIA_BYTES = 5 * 1024 * 1024
AI_SENDER_NAME = "AI_TERMINAL"
SYSTEM_SENDER_NAME = "SYSTEM"
ASSISTANT_UNAVAILABLE = "SYSTEM: AI capabilities unavailable (Missing API Key)."


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    IN_ROOM = "in_room"


class EvictionReason(str, Enum):
    KICKED = "kicked"
    BANNED = "banned"
    ROOM_CLOSED = "room_closed"


@dataclass(frozen=True)
class Notice:
    reason: EvictionReason
    message: str
    room_id: str | None = None


@dataclass(frozen=True)
class Attachment:
    name: str
    size: int
    mime_type: str = "application/octet-stream"
    # Raw bytes, only needed for assistant image analysis
    data: bytes | None = None


@dataclass(frozen=True)
class SessionView:
    state: SessionState
    identity: Identity | None = None
    friends: list[User] = field(default_factory=list)
    rooms: list[Room] = field(default_factory=list)
    lobby: list[Room] = field(default_factory=list)
    room: Room | None = None
    # Content already opened
    messages: list[Message] = field(default_factory=list)
    notice: Notice | None = None


ViewListener = Callable[[SessionView], None]


class SessionOrchestrator:
    def __init__(self, core: ChatCore):
        self.core = core
        self.settings = core.settings
        self.state = SessionState.ANONYMOUS
        self.identity: Identity | None = None
        self.friends: list[User] = []
        self.rooms: list[Room] = []
        self.lobby: list[Room] = []
        self.room: Room | None = None
        self.messages: list[Message] = []
        self.notice: Notice | None = None

        self._user_sub: Subscription | None = None
        self._rooms_sub: Subscription | None = None
        self._lobby_sub: Subscription | None = None
        self._auth_dispose: Callable[[], None] | None = None
        self._room_sub: Subscription | None = None
        self._messages_sub: Subscription | None = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[ViewListener] = []

    # --- view publication ---

    @property
    def view(self) -> SessionView:
        envelope = self.core.envelope
        return SessionView(
            state=self.state,
            identity=self.identity,
            friends=list(self.friends),
            rooms=list(self.rooms),
            lobby=list(self.lobby),
            room=self.room,
            messages=[m.model_copy(update={"content": envelope.open(m.content)}) for m in self.messages],
            notice=self.notice,
        )

    def add_listener(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.view
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session view listener failed")

    # --- helpers ---

    async def _with_timeout(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.settings.store_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StoreTimeout() from exc

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background session task failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for background work (read receipts, assistant replies) to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            raise RuntimeError(f"Operation not allowed in state {self.state.value}")

    @property
    def is_admin(self) -> bool:
        return self.identity is not None and self.identity.is_admin

    # --- authentication ---

    async def login(self, username: str, password: str) -> Result[Identity]:
        return await self._authenticate(self.core.identities.authenticate(username, password))

    async def register(self, username: str, password: str) -> Result[Identity]:
        return await self._authenticate(self.core.identities.register(username, password))

    async def _authenticate(self, attempt) -> Result[Identity]:
        if self.state != SessionState.ANONYMOUS:
            attempt.close()
            raise RuntimeError("Session already signed in")
        self.state = SessionState.AUTHENTICATING
        self._publish()
        try:
            result = await self._with_timeout(attempt)
            if result.success:
                await self._start(result.data)
        except Exception:
            await self._reset()
            raise
        if not result.success:
            await self._reset()
        return result

    async def _start(self, identity: Identity) -> None:
        self.identity = identity
        self.notice = None
        if not isinstance(identity, AdminIdentity):
            self._auth_dispose = self.core.authenticator.on_auth_state_change(self._on_auth_state)
        self._lobby_sub = await self._with_timeout(self.core.rooms.watch_public(self._on_lobby))
        if not isinstance(identity, AdminIdentity):
            self._spawn(self.core.identities.record_login(identity))
            self._user_sub = await self._with_timeout(self.core.identities.watch(identity.id, self._on_user))
            self._rooms_sub = await self._with_timeout(
                self.core.rooms.watch_membership(identity.id, self._on_rooms)
            )
        self.state = SessionState.AUTHENTICATED
        logger.info("Session started for %s", identity.username)
        self._publish()

    async def logout(self) -> None:
        if self.state == SessionState.ANONYMOUS:
            return
        identity = self.identity
        await self._reset()
        if identity is not None:
            await self.core.audit.record(AuditEvent.LOGOUT, f"User {identity.username} logged out")

    async def _reset(self) -> None:
        self._dispose_room_subs()
        for sub in (self._user_sub, self._rooms_sub, self._lobby_sub):
            if sub is not None:
                sub.close()
        self._user_sub = self._rooms_sub = self._lobby_sub = None
        if self._auth_dispose is not None:
            self._auth_dispose()
            self._auth_dispose = None
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.state = SessionState.ANONYMOUS
        self.identity = None
        self.friends = []
        self.rooms = []
        self.lobby = []
        self.room = None
        self.messages = []
        self._publish()

    # --- subscription callbacks ---

    def _on_auth_state(self, uid: str, signed_in: bool) -> None:
        if signed_in or self.state == SessionState.ANONYMOUS or self.identity is None:
            return
        if uid == self.identity.id:
            logger.warning("Account %s revoked, ending session", uid)
            self._spawn(self.logout())

    def _on_user(self, user: User | None) -> None:
        if self.state == SessionState.ANONYMOUS:
            return
        if user is None:
            # Record removed out from under us
            logger.warning("User record vanished, ending session")
            self._spawn(self.logout())
            return
        self.identity = user
        self._spawn(self._refresh_friends(user))
        self._publish()

    async def _refresh_friends(self, user: User) -> None:
        self.friends = await self.core.identities.friends_of(user)
        self._publish()

    def _on_rooms(self, rooms: list[Room]) -> None:
        if self.state == SessionState.ANONYMOUS:
            return
        self.rooms = rooms
        self._publish()

    def _on_lobby(self, rooms: list[Room]) -> None:
        if self.state == SessionState.ANONYMOUS:
            return
        self.lobby = rooms
        if self.is_admin:
            self.rooms = list(rooms)
        self._publish()

    def _on_room(self, room: Room | None) -> None:
        if self.state != SessionState.IN_ROOM or self.identity is None:
            return
        me = self.identity
        if room is None:
            self._evict(EvictionReason.ROOM_CLOSED, "Room closed or unavailable.")
        elif not me.is_admin and room.is_banned(me.id):
            self._evict(EvictionReason.BANNED, "You have been banned.")
        elif not me.is_admin and not room.has_participant(me.id):
            self._evict(EvictionReason.KICKED, "You have been kicked.")
        else:
            self.room = room
            self._publish()

    def _on_messages(self, messages: list[Message]) -> None:
        if self.state != SessionState.IN_ROOM or self.room is None:
            return
        self.messages = messages
        reader = self.identity.id
        if any(needs_receipt(m, reader) for m in messages):
            self._spawn(self.core.messages.mark_read(self.room.id, reader, messages))
        self._publish()

    def _evict(self, reason: EvictionReason, text: str) -> None:
        room_id = self.room.id if self.room else None
        self._dispose_room_subs()
        self.room = None
        self.messages = []
        self.state = SessionState.AUTHENTICATED
        self.notice = Notice(reason=reason, message=text, room_id=room_id)
        logger.info("Session for %s evicted from %s: %s", self.identity.username, room_id, reason.value)
        self._publish()

    def _dispose_room_subs(self) -> None:
        for sub in (self._room_sub, self._messages_sub):
            if sub is not None:
                sub.close()
        self._room_sub = self._messages_sub = None

    # --- rooms ---

    async def create_room(self, name: str) -> Result[Room]:
        self._require(SessionState.AUTHENTICATED, SessionState.IN_ROOM)
        try:
            name = InputSanitizer.sanitize_room_name(name)
        except ValueError as exc:
            return Result.fail(InvalidInput(str(exc)))
        room = await self.core.rooms.create_group(name, self.identity.id)
        return await self.join_room(room.id)

    async def join_room(self, room_id: str) -> Result[Room]:
        self._require(SessionState.AUTHENTICATED, SessionState.IN_ROOM)
        room_id = (room_id or "").strip()
        if not room_id:
            return Result.fail(InvalidInput("Room id required"))

        result = await self.core.rooms.join(room_id, self.identity.id, as_admin=self.is_admin)
        if not result.success:
            return result

        # The previous room's subscriptions go before the next ones start
        self._dispose_room_subs()
        self.room = result.data
        self.messages = []
        self.notice = None
        self.state = SessionState.IN_ROOM
        self._room_sub = await self.core.rooms.watch(room_id, self._on_room)
        if self.state != SessionState.IN_ROOM:
            # Evicted by the very first snapshot
            return Result.fail(AccessDenied(self.notice.message if self.notice else None))
        self._messages_sub = await self.core.messages.watch(room_id, self._on_messages)

        await self.core.audit.record(AuditEvent.ROOM_JOIN, f"User {self.identity.username} joining {room_id}")
        self._publish()
        return Result.ok(self.room)

    async def leave_room(self) -> None:
        self._require(SessionState.IN_ROOM)
        self._dispose_room_subs()
        self.room = None
        self.messages = []
        self.state = SessionState.AUTHENTICATED
        self._publish()

    # --- messages ---

    def _system_message(self, text: str) -> Message:
        return Message(
            sender=MessageSender.SYSTEM,
            sender_name=SYSTEM_SENDER_NAME,
            content=self.core.envelope.seal(text),
            is_encrypted=True,
        )

    async def send_message(self, text: str = "", attachment: Attachment | None = None) -> Result:
        """
        Returns Result[Message] for chat, Result[str] for admin commands.
        """
        self._require(SessionState.IN_ROOM)
        text = text or ""
        if not text.strip() and attachment is None:
            return Result.fail(InvalidInput("Nothing to send"))

        me, room = self.identity, self.room
        # Decided on the latest snapshot, without a store round trip
        if room.is_muted(me.id) and not me.is_admin:
            return Result.fail(Muted())

        try:
            text = InputSanitizer.sanitize_body(text) if text else text
        except ValueError as exc:
            return Result.fail(InvalidInput(str(exc)))

        parsed = parse_outgoing(
            text, me.is_admin, prefix=self.settings.command_prefix, marker=self.settings.assistant_marker
        )

        if isinstance(parsed, ModerationCommand):
            result = await self.core.rooms.moderate(room.id, me.id, parsed.action, parsed.target)
            await self.core.messages.append(room.id, self._system_message(result.data if result else result.message))
            return result
        if isinstance(parsed, UnrecognisedCommand):
            await self.core.messages.append(room.id, self._system_message("Unknown command"))
            return Result.fail(UnknownCommand(f"Unknown command: {parsed.name}"))

        msg_type = MessageType.TEXT
        file_name = file_size = None
        if attachment is not None:
            if attachment.size > MAX_FILE_SIZE_BYTES:
                return Result.fail(InvalidInput("File too large. Limit is 10GB."))
            try:
                file_name = InputSanitizer.sanitize_filename(attachment.name)
            except ValueError as exc:
                return Result.fail(InvalidInput(str(exc)))
            file_size = attachment.size
            msg_type = message_type_for_mime(attachment.mime_type)

        message = Message(
            sender=MessageSender.USER,
            sender_name=me.username,
            sender_id=me.id,
            content=self.core.envelope.seal(text or f"Sent a file: {file_name}"),
            is_encrypted=True,
            type=msg_type,
            file_name=file_name,
            file_size=file_size,
        )
        # The user's own message is stored before any assistant work starts
        await self.core.messages.append(room.id, message)
        await self.core.audit.record(AuditEvent.MESSAGE_SENT, f"User {me.username} sent message")

        if isinstance(parsed, AssistantPrompt):
            media = None
            if (
                attachment is not None
                and msg_type == MessageType.IMAGE
                and attachment.data is not None
                and attachment.size < MAX_INLINE_MEDIA_BYTES
            ):
                media = InlineMedia(mime_type=attachment.mime_type, data=attachment.data)
            self._spawn(self._ask_assistant(room.id, parsed.prompt, media))

        return Result.ok(message)

    async def _ask_assistant(self, room_id: str, prompt: str, media: InlineMedia | None) -> None:
        assistant = self.core.assistant
        if assistant is None:
            await self.core.messages.append(room_id, self._system_message(ASSISTANT_UNAVAILABLE))
            return
        try:
            reply = await assistant.generate(prompt, media)
        except ExternalServiceError as exc:
            await self.core.messages.append(room_id, self._system_message(f"Error: {exc}"))
            await self.core.audit.record(AuditEvent.API_ERROR, str(exc), LogLevel.WARNING)
            return
        await self.core.messages.append(room_id, Message(
            sender=MessageSender.AI,
            sender_name=AI_SENDER_NAME,
            content=self.core.envelope.seal(reply),
            is_encrypted=True,
        ))

    # --- friends ---

    def _member(self) -> User | None:
        return self.identity if isinstance(self.identity, User) else None

    async def send_friend_request(self, username: str) -> Result[str]:
        self._require(SessionState.AUTHENTICATED, SessionState.IN_ROOM)
        me = self._member()
        if me is None:
            return Result.fail(AccessDenied("The administrative identity has no contacts."))
        return await self.core.identities.send_friend_request(me.id, username.strip())

    async def respond_to_friend_request(self, requester_id: str, accept: bool) -> Result[Room | None]:
        self._require(SessionState.AUTHENTICATED, SessionState.IN_ROOM)
        me = self._member()
        if me is None:
            return Result.fail(AccessDenied("The administrative identity has no contacts."))
        return await self.core.identities.resolve_friend_request(me.id, requester_id, accept)

    # --- voice channel audit hooks ---

    async def voice_channel_opened(self) -> None:
        await self.core.audit.record(AuditEvent.VOICE_CALL_START, "Secure voice channel established")

    async def voice_channel_closed(self) -> None:
        await self.core.audit.record(AuditEvent.VOICE_CALL_END, "Secure voice channel closed")

    async def voice_channel_failed(self) -> None:
        await self.core.audit.record(AuditEvent.VOICE_CALL_ERROR, "Connection error occurred", LogLevel.WARNING)


__all__ = [
    "Attachment",
    "EvictionReason",
    "Notice",
    "SessionOrchestrator",
    "SessionState",
    "SessionView",
]
