from securechat.store.base import (
    ArrayContains,
    ArrayRemove,
    ArrayUnion,
    BatchOp,
    BatchTooLarge,
    DocumentExists,
    DocumentNotFound,
    Eq,
    Query,
    Store,
    StoreError,
    Subscription,
)
from securechat.store.memory import MemoryStore

__all__ = [
    "ArrayContains",
    "ArrayRemove",
    "ArrayUnion",
    "BatchOp",
    "BatchTooLarge",
    "DocumentExists",
    "DocumentNotFound",
    "Eq",
    "MemoryStore",
    "Query",
    "Store",
    "StoreError",
    "Subscription",
]
