# securechat/models/system_log.py
from enum import Enum

from pydantic import Field

from securechat.models.common import Document, now_ms


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"


class SystemLog(Document):
    id: str
    timestamp: int = Field(default_factory=now_ms)
    event: str
    details: str = ""
    level: LogLevel = LogLevel.INFO
