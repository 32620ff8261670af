# securechat/models/__init__.py
from .document import DocumentRow
from .message import Message, MessageSender, MessageType
from .room import Room, RoomType, private_room_id
from .system_log import LogLevel, SystemLog
from .user import AdminIdentity, Identity, User, UserRole

__all__ = [
    "AdminIdentity",
    "DocumentRow",
    "Identity",
    "LogLevel",
    "Message",
    "MessageSender",
    "MessageType",
    "Room",
    "RoomType",
    "SystemLog",
    "User",
    "UserRole",
    "private_room_id",
]
