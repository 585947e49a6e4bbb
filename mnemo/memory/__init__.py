"""Memory engine module."""

from mnemo.memory.models import MemoryChunk, MemorySource, MemoryType, UserProfileEntry
from mnemo.memory.service import MemoryService
from mnemo.memory.sqlite_store import SQLiteMemoryStore
from mnemo.memory.store import ANY_WORKSPACE, MemoryStoreClient

__all__ = [
    "ANY_WORKSPACE",
    "MemoryChunk",
    "MemoryService",
    "MemorySource",
    "MemoryStoreClient",
    "MemoryType",
    "SQLiteMemoryStore",
    "UserProfileEntry",
]
