"""Memory service: store, recall and format persistent memories.

Every write path passes through :func:`mnemo.redaction.sanitize` before the
store sees the text. Recall is hybrid: keyword (BM25) matches take up to 70%
of the slots, and recency/importance-ordered memories fill the rest.
"""

from __future__ import annotations

import math
import re
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime

from mnemo.config.schema import BudgetConfig, MemoryConfig
from mnemo.logging import get_logger
from mnemo.memory.budget import allocate_budget, truncate_to_token_budget
from mnemo.memory.chunking import chunk_text
from mnemo.memory.models import (
    MemoryChunk,
    MemorySource,
    MemoryStats,
    MemoryType,
    ProfileGroup,
    UserProfileEntry,
    utcnow,
)
from mnemo.memory.store import ANY_WORKSPACE, MemoryStoreClient
from mnemo.redaction import sanitize

logger = get_logger(__name__)

_FTS_UNSAFE_RE = re.compile(r"['\"*()]")
_PROFILE_ID_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_]")


def new_memory_id() -> str:
    return f"mem_{uuid.uuid4().hex[:16]}"


def profile_entry_id(category: str, key: str) -> str:
    """Deterministic profile id, so re-learning a key overwrites it."""
    return _PROFILE_ID_UNSAFE_RE.sub("_", f"prof_{category}_{key}")


def time_ago(timestamp: datetime, now: datetime) -> str:
    seconds = math.floor((now - timestamp).total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 30:
        return f"{days}d ago"
    return f"{days // 30}mo ago"


class MemoryService:
    """Orchestrates redaction, chunking, storage, recall and budgeting.

    Holds no state of its own beyond the injected store and settings.
    """

    def __init__(
        self,
        store: MemoryStoreClient,
        config: MemoryConfig | None = None,
        *,
        budget: BudgetConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.config = config or MemoryConfig()
        self.budget = budget or BudgetConfig()
        self._clock = clock or utcnow

    # ------------------------------------------------------------------
    # Storing
    # ------------------------------------------------------------------

    async def store_memory(
        self,
        content: str,
        type: str,
        *,
        workspace: str | None = None,
        conversation_id: str | None = None,
        source: str = MemorySource.AUTO,
        tags: Iterable[str] | None = None,
        importance: int | None = None,
    ) -> list[str]:
        """Sanitize, chunk and persist *content*. Returns ids of stored chunks.

        Chunks are committed independently: a failed insert is logged and
        its id left out, the rest are still stored.
        """
        sanitized = sanitize(content)
        if not sanitized.strip():
            return []

        tag_list = list(tags or [])
        importance = self.config.default_importance if importance is None else importance
        ids: list[str] = []
        for piece in chunk_text(sanitized, self.config.max_chunk_chars):
            now = self._clock()
            chunk = MemoryChunk(
                id=new_memory_id(),
                workspace=workspace,
                conversation_id=conversation_id,
                type=type,
                source=source,
                content=piece,
                tags=list(tag_list),
                importance=importance,
                created_at=now,
                updated_at=now,
            )
            try:
                result = await self.store.insert_memory_chunk(chunk)
            except Exception as e:
                logger.warning("Memory chunk insert raised", memory_id=chunk.id, error=str(e))
                continue
            if result.success:
                ids.append(chunk.id)
            else:
                logger.warning("Memory chunk insert failed", memory_id=chunk.id, error=result.error)

        logger.debug("Stored memory", type=type, workspace=workspace, chunks=len(ids))
        return ids

    async def store_session_summary(
        self,
        summary: str,
        *,
        workspace: str | None = None,
        conversation_id: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> list[str]:
        tag_list = list(tags or [])
        return await self.store_memory(
            summary,
            MemoryType.SESSION_SUMMARY,
            workspace=workspace,
            conversation_id=conversation_id,
            source=MemorySource.AUTO,
            tags=tag_list or ["session-summary"],
            importance=6,
        )

    async def store_correction(
        self,
        content: str,
        *,
        workspace: str | None = None,
        conversation_id: str | None = None,
    ) -> list[str]:
        """Store a user correction; the highest-importance memory type."""
        return await self.store_memory(
            content,
            MemoryType.CORRECTION,
            workspace=workspace,
            conversation_id=conversation_id,
            source=MemorySource.USER,
            tags=["correction", "preference"],
            importance=9,
        )

    async def store_fact(
        self,
        content: str,
        *,
        workspace: str | None = None,
        conversation_id: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> list[str]:
        """Store a fact the user explicitly asked to remember."""
        return await self.store_memory(
            content,
            MemoryType.FACT,
            workspace=workspace,
            conversation_id=conversation_id,
            source=MemorySource.USER,
            tags=tags,
            importance=8,
        )

    # ------------------------------------------------------------------
    # Recall
    # ------------------------------------------------------------------

    async def recall_memories(
        self,
        query: str | None = None,
        *,
        workspace: str | None = None,
        types: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[MemoryChunk]:
        """Hybrid recall: keyword matches first, then recency/importance fill.

        Every returned chunk is touched, so recall updates access bookkeeping.
        """
        limit = self.config.recall_limit if limit is None else limit
        if limit <= 0:
            return []

        seen: set[str] = set()
        results: list[MemoryChunk] = []

        def add_unique(chunks: Iterable[MemoryChunk]) -> None:
            for chunk in chunks:
                if chunk.id not in seen:
                    seen.add(chunk.id)
                    results.append(chunk)

        safe_query = _FTS_UNSAFE_RE.sub(" ", query or "").strip()
        if safe_query:
            keyword_limit = math.ceil(limit * self.config.keyword_share)
            try:
                found = await self.store.search_memories(safe_query, workspace, keyword_limit)
                if found.success and found.data:
                    add_unique(found.data)
                elif not found.success:
                    logger.warning("Memory keyword search failed", error=found.error)
            except Exception as e:
                logger.warning("Memory keyword search raised", error=str(e))

        remaining = limit - len(results)
        if remaining > 0:
            try:
                recent = await self.store.get_memories_by_workspace(workspace, remaining)
                if recent.success and recent.data:
                    add_unique(recent.data)
                elif not recent.success:
                    logger.warning("Memory recency listing failed", error=recent.error)
            except Exception as e:
                logger.warning("Memory recency listing raised", error=str(e))

        if types is not None:
            wanted = set(types)
            results = [m for m in results if m.type in wanted]

        results = results[:limit]
        for memory in results:
            try:
                await self.store.touch_memory(memory.id)
            except Exception as e:
                logger.warning("Failed to touch memory", memory_id=memory.id, error=str(e))

        return results

    async def list_memories(
        self,
        *,
        workspace: str | None = None,
        type: str | None = None,
        limit: int = 50,
    ) -> list[MemoryChunk]:
        """List memories without search or access bookkeeping."""
        try:
            if type:
                result = await self.store.get_memories_by_type(type, workspace, limit)
            else:
                result = await self.store.get_memories_by_workspace(workspace, limit)
        except Exception as e:
            logger.warning("Memory listing raised", error=str(e))
            return []
        return list(result.data or []) if result.success else []

    # ------------------------------------------------------------------
    # Context building
    # ------------------------------------------------------------------

    async def build_memory_context(
        self,
        query: str | None = None,
        *,
        workspace: str | None = None,
        total_tokens: int | None = None,
    ) -> str | None:
        """Format profile and relevant memories for injection into a prompt.

        Returns ``None`` when there is nothing to include.
        """
        allocation = allocate_budget(self.budget, total_tokens=total_tokens)
        sections: list[str] = []

        profile = await self._load_profile()
        profile_lines = [
            f"- {e.category}/{e.key}: {e.value}"
            for e in profile
            if e.confidence >= self.config.profile_min_confidence
        ]
        if profile_lines:
            sections.append("[User Profile]\n" + "\n".join(profile_lines))

        memories = await self.recall_memories(
            query,
            workspace=workspace,
            limit=self.config.context_recall_limit,
        )
        if memories:
            now = self._clock()
            memory_lines = [
                f"[{m.type.replace('_', ' ')} — {time_ago(m.created_at, now)}]\n{m.content}"
                for m in memories
            ]
            sections.append("[Relevant Memories]\n" + "\n\n".join(memory_lines))

        if not sections:
            return None

        return truncate_to_token_budget("\n\n".join(sections), allocation.memory)

    # ------------------------------------------------------------------
    # User profile
    # ------------------------------------------------------------------

    async def _load_profile(self) -> list[UserProfileEntry]:
        try:
            result = await self.store.get_user_profile()
        except Exception as e:
            logger.warning("User profile load raised", error=str(e))
            return []
        if not result.success:
            logger.warning("User profile load failed", error=result.error)
            return []
        return list(result.data or [])

    async def learn_preference(
        self,
        category: str,
        key: str,
        value: str,
        confidence: float | None = None,
    ) -> bool:
        """Upsert a profile entry keyed by (category, key). Returns success."""
        entry_id = profile_entry_id(category, key)
        try:
            result = await self.store.upsert_user_profile(
                id=entry_id,
                category=category,
                key=key,
                value=sanitize(value),
                confidence=confidence,
            )
        except Exception as e:
            logger.warning("Preference upsert raised", entry_id=entry_id, error=str(e))
            return False
        if not result.success:
            logger.warning("Preference upsert failed", entry_id=entry_id, error=result.error)
        return result.success

    async def get_profile_value(self, category: str, key: str) -> str | None:
        try:
            result = await self.store.get_user_profile_by_category(category)
        except Exception as e:
            logger.warning("Profile lookup raised", category=category, error=str(e))
            return None
        if not result.success or not result.data:
            return None
        for entry in result.data:
            if entry.key == key:
                return entry.value
        return None

    async def get_formatted_profile(self) -> list[ProfileGroup]:
        """Group profile entries by category, in first-seen category order."""
        grouped: dict[str, list[UserProfileEntry]] = {}
        for entry in await self._load_profile():
            grouped.setdefault(entry.category, []).append(entry)
        return [ProfileGroup(category=c, entries=entries) for c, entries in grouped.items()]

    async def remove_profile_entry(self, entry_id: str) -> bool:
        try:
            result = await self.store.delete_user_profile_entry(entry_id)
        except Exception as e:
            logger.warning("Profile entry delete raised", entry_id=entry_id, error=str(e))
            return False
        return bool(result.success and result.data)

    async def clear_profile(self) -> bool:
        try:
            result = await self.store.clear_user_profile()
        except Exception as e:
            logger.warning("Profile clear raised", error=str(e))
            return False
        return result.success

    # ------------------------------------------------------------------
    # Deletion and stats
    # ------------------------------------------------------------------

    async def forget_memory(self, memory_id: str) -> bool:
        try:
            result = await self.store.delete_memory_chunk(memory_id)
        except Exception as e:
            logger.warning("Memory delete raised", memory_id=memory_id, error=str(e))
            return False
        return bool(result.success and result.data)

    async def forget_workspace(self, workspace: str) -> int:
        try:
            result = await self.store.delete_workspace_memories(workspace)
        except Exception as e:
            logger.warning("Workspace delete raised", workspace=workspace, error=str(e))
            return 0
        return int(result.data or 0) if result.success else 0

    async def _count(self, workspace) -> int:
        try:
            result = await self.store.get_memory_count(workspace)
        except Exception as e:
            logger.warning("Memory count raised", error=str(e))
            return 0
        return int(result.data or 0) if result.success else 0

    async def get_memory_stats(self, workspace: str | None = None) -> MemoryStats:
        total = await self._count(ANY_WORKSPACE)
        project = await self._count(workspace) if workspace else 0
        global_count = await self._count(None)
        profile = await self._load_profile()

        oldest = newest = None
        try:
            span = await self.store.get_memory_time_range(workspace if workspace else ANY_WORKSPACE)
            if span.success and span.data:
                oldest, newest = span.data
        except Exception as e:
            logger.warning("Memory time range raised", error=str(e))

        return MemoryStats(
            total_memories=total,
            project_memories=project,
            global_memories=global_count,
            profile_entries=len(profile),
            oldest_memory=oldest,
            newest_memory=newest,
        )
