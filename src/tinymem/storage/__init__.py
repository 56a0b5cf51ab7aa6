"""Storage abstractions for tinymem."""

from .kv import KVOp, KVStore, StoreError, StoreUnavailableError
from .models import (
    ActiveStatus,
    Artifact,
    ChainLink,
    DoneStatus,
    Hook,
    Memory,
    Msg,
    SearchHit,
    Session,
    WaitingStatus,
)
from .repository import InvalidCompositeIdError, Repository, StoredDataError

__all__ = [
    "ActiveStatus",
    "Artifact",
    "ChainLink",
    "DoneStatus",
    "Hook",
    "InvalidCompositeIdError",
    "KVOp",
    "KVStore",
    "Memory",
    "Msg",
    "Repository",
    "SearchHit",
    "Session",
    "StoreError",
    "StoreUnavailableError",
    "StoredDataError",
    "WaitingStatus",
]
