"""
Error taxonomy for the chat core.

Expected outcomes (wrong password, username taken, banned, ...) are carried
inside a Result and rendered by the caller. Infrastructure failures
(store unreachable, timeouts) are raised so the caller can offer a retry.
"""
from __future__ import annotations


class ChatError(Exception):
    """Base class. `code` is a stable machine-readable identifier."""

    code = "CHAT_ERROR"
    default_message = "Chat error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


# --- NotFound ---

class NotFound(ChatError):
    code = "NOT_FOUND"
    default_message = "Not found"


class UserNotFound(NotFound):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


class RoomNotFound(NotFound):
    code = "ROOM_NOT_FOUND"
    default_message = "Room not found"


# --- Conflict ---

class Conflict(ChatError):
    code = "CONFLICT"
    default_message = "Conflict"


class UsernameTaken(Conflict):
    code = "USERNAME_TAKEN"
    default_message = "Username is already taken"


class RequestDuplicate(Conflict):
    code = "REQUEST_DUPLICATE"
    default_message = "Request already sent"


class AlreadyFriends(Conflict):
    code = "ALREADY_FRIENDS"
    default_message = "Already friends"


class SelfRequest(Conflict):
    code = "SELF_REQUEST"
    default_message = "Cannot add yourself"


# --- Credentials / input ---

class InvalidCredentials(ChatError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"


class TooManyAttempts(ChatError):
    code = "TOO_MANY_ATTEMPTS"
    default_message = "Too many attempts"

    def __init__(self, retry_after: float = 0.0, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(message or f"Too many attempts. Try again in {int(retry_after)} seconds.")


class InvalidInput(ChatError):
    code = "INVALID_INPUT"
    default_message = "Invalid input"


class UnknownCommand(ChatError):
    code = "UNKNOWN_COMMAND"
    default_message = "Unknown command"


# --- AccessDenied ---

class AccessDenied(ChatError):
    code = "ACCESS_DENIED"
    default_message = "Access denied"


class Banned(AccessDenied):
    code = "BANNED"
    default_message = "Access Denied: Banned."


class PrivateRoom(AccessDenied):
    code = "PRIVATE_ROOM"
    default_message = "Access Denied: Private channel."


class Muted(AccessDenied):
    code = "MUTED"
    default_message = "TRANSMISSION BLOCKED: You are muted."


# --- Infrastructure (raised, not returned) ---

class ConnectivityError(ChatError):
    """Store or network unreachable. Retryable; says nothing about user input."""

    code = "CONNECTIVITY"
    default_message = "Database connection failed"


class StoreTimeout(ConnectivityError):
    code = "TIMEOUT"
    default_message = "Database connection timeout"


class ExternalServiceError(ChatError):
    code = "EXTERNAL_SERVICE"
    default_message = "External service error"


class UnsupportedOperation(ChatError):
    code = "UNSUPPORTED"
    default_message = "Operation not supported by the backing store"
