"""
Result wrapper for service operations.

Use Result for expected failures (validation, business rules); raise for
unexpected ones (store unreachable, bugs).

    result = await identities.register("alice", "pw")
    if result.success:
        user = result.data
    else:
        print(result.error_code, result.message)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from securechat.core.exceptions import ChatError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    success: bool
    data: T | None = None
    error: ChatError | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> Result[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ChatError) -> Result[T]:
        return cls(success=False, error=error)

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""

    def unwrap(self) -> T:
        """Return data or raise the carried error."""
        if not self.success:
            raise self.error
        return self.data

    def __bool__(self) -> bool:
        return self.success
