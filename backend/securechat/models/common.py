# securechat/models/common.py
import time

from pydantic import BaseModel, ConfigDict


def now_ms() -> int:
    return int(time.time() * 1000)


class Document(BaseModel):
    """A record stored as a JSON document in the backing store."""
    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    def to_document(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, doc: dict):
        return cls.model_validate(doc)
