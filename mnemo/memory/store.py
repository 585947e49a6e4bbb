"""Storage boundary consumed by the memory service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Final

from mnemo.memory.models import MemoryChunk, StoreResult, UserProfileEntry


class _AnyWorkspace:
    def __repr__(self) -> str:
        return "ANY_WORKSPACE"


# Count across every workspace, global memories included.
ANY_WORKSPACE: Final = _AnyWorkspace()


class MemoryStoreClient(ABC):
    """Keyword-searchable memory storage.

    ``workspace=None`` always means the global tier. Reads and writes report
    failure through :class:`StoreResult` rather than raising.
    """

    @abstractmethod
    async def insert_memory_chunk(self, chunk: MemoryChunk) -> StoreResult[None]:
        ...

    @abstractmethod
    async def search_memories(
        self, query: str, workspace: str | None, limit: int
    ) -> StoreResult[list[MemoryChunk]]:
        """Keyword (BM25-style) search, best match first."""

    @abstractmethod
    async def get_memories_by_workspace(
        self, workspace: str | None, limit: int
    ) -> StoreResult[list[MemoryChunk]]:
        """Most important, then most recent memories for *workspace*."""

    @abstractmethod
    async def touch_memory(self, memory_id: str) -> None:
        """Record an access (fire-and-forget)."""

    @abstractmethod
    async def get_memory_count(
        self, workspace: str | None | _AnyWorkspace = ANY_WORKSPACE
    ) -> StoreResult[int]:
        ...

    @abstractmethod
    async def get_user_profile(self) -> StoreResult[list[UserProfileEntry]]:
        ...

    @abstractmethod
    async def get_user_profile_by_category(self, category: str) -> StoreResult[list[UserProfileEntry]]:
        ...

    @abstractmethod
    async def upsert_user_profile(
        self,
        *,
        id: str,
        category: str,
        key: str,
        value: str,
        confidence: float | None = None,
    ) -> StoreResult[None]:
        ...

    # Management operations; stores that do not support them report failure.

    async def get_memories_by_type(
        self, memory_type: str, workspace: str | None, limit: int
    ) -> StoreResult[list[MemoryChunk]]:
        return StoreResult.fail("get_memories_by_type not supported")

    async def delete_memory_chunk(self, memory_id: str) -> StoreResult[bool]:
        return StoreResult.fail("delete_memory_chunk not supported")

    async def delete_workspace_memories(self, workspace: str) -> StoreResult[int]:
        return StoreResult.fail("delete_workspace_memories not supported")

    async def delete_user_profile_entry(self, entry_id: str) -> StoreResult[bool]:
        return StoreResult.fail("delete_user_profile_entry not supported")

    async def clear_user_profile(self) -> StoreResult[int]:
        return StoreResult.fail("clear_user_profile not supported")

    async def get_memory_time_range(
        self, workspace: str | None | _AnyWorkspace = ANY_WORKSPACE
    ) -> StoreResult[tuple[datetime, datetime] | None]:
        return StoreResult.fail("get_memory_time_range not supported")
