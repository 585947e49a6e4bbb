"""Shared fixtures: an in-memory MemoryStoreClient with failure injection."""

from __future__ import annotations

import re

import pytest

from mnemo.memory.models import MemoryChunk, StoreResult, UserProfileEntry, utcnow
from mnemo.memory.store import ANY_WORKSPACE, MemoryStoreClient

_WORD_RE = re.compile(r"\w+")


class FakeMemoryStore(MemoryStoreClient):
    """Dict-backed store. Keyword search ranks by number of matching terms.

    Set ``fail`` to a set of method names to make them report failure, or
    ``raise_on`` to make them raise.
    """

    def __init__(self) -> None:
        self.chunks: dict[str, MemoryChunk] = {}
        self.profile: dict[str, UserProfileEntry] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.fail: set[str] = set()
        self.raise_on: set[str] = set()

    def _enter(self, name: str, *args) -> StoreResult | None:
        self.calls.append((name, args))
        if name in self.raise_on:
            raise RuntimeError(f"{name} exploded")
        if name in self.fail:
            return StoreResult.fail(f"{name} failed")
        return None

    def calls_to(self, name: str) -> list[tuple]:
        return [args for called, args in self.calls if called == name]

    @staticmethod
    def _visible(chunk: MemoryChunk, workspace: str | None) -> bool:
        return chunk.workspace is None or (workspace is not None and chunk.workspace == workspace)

    async def insert_memory_chunk(self, chunk):
        if (err := self._enter("insert_memory_chunk", chunk)) is not None:
            return err
        self.chunks[chunk.id] = chunk
        return StoreResult.ok()

    async def search_memories(self, query, workspace, limit):
        if (err := self._enter("search_memories", query, workspace, limit)) is not None:
            return err
        terms = {t.lower() for t in _WORD_RE.findall(query)}
        scored = []
        for chunk in self.chunks.values():
            if not self._visible(chunk, workspace):
                continue
            words = {w.lower() for w in _WORD_RE.findall(chunk.content)}
            hits = len(terms & words)
            if hits:
                scored.append((hits, chunk.importance, chunk))
        scored.sort(key=lambda s: (s[0], s[1]), reverse=True)
        return StoreResult.ok([c for _, _, c in scored[:limit]])

    async def get_memories_by_workspace(self, workspace, limit):
        if (err := self._enter("get_memories_by_workspace", workspace, limit)) is not None:
            return err
        visible = [c for c in self.chunks.values() if self._visible(c, workspace)]
        visible.sort(key=lambda c: (c.importance, c.created_at), reverse=True)
        return StoreResult.ok(visible[:limit])

    async def get_memories_by_type(self, memory_type, workspace, limit):
        if (err := self._enter("get_memories_by_type", memory_type, workspace, limit)) is not None:
            return err
        matching = [c for c in self.chunks.values() if c.type == memory_type and self._visible(c, workspace)]
        return StoreResult.ok(matching[:limit])

    async def touch_memory(self, memory_id):
        self.calls.append(("touch_memory", (memory_id,)))
        if "touch_memory" in self.raise_on:
            raise RuntimeError("touch exploded")
        chunk = self.chunks.get(memory_id)
        if chunk is not None:
            chunk.access_count += 1
            chunk.last_accessed_at = utcnow()

    async def get_memory_count(self, workspace=ANY_WORKSPACE):
        if (err := self._enter("get_memory_count", workspace)) is not None:
            return err
        if workspace is ANY_WORKSPACE:
            return StoreResult.ok(len(self.chunks))
        return StoreResult.ok(sum(1 for c in self.chunks.values() if c.workspace == workspace))

    async def get_memory_time_range(self, workspace=ANY_WORKSPACE):
        if (err := self._enter("get_memory_time_range", workspace)) is not None:
            return err
        if workspace is ANY_WORKSPACE:
            stamps = [c.created_at for c in self.chunks.values()]
        else:
            stamps = [c.created_at for c in self.chunks.values() if self._visible(c, workspace)]
        return StoreResult.ok((min(stamps), max(stamps)) if stamps else None)

    async def delete_memory_chunk(self, memory_id):
        if (err := self._enter("delete_memory_chunk", memory_id)) is not None:
            return err
        return StoreResult.ok(self.chunks.pop(memory_id, None) is not None)

    async def delete_workspace_memories(self, workspace):
        if (err := self._enter("delete_workspace_memories", workspace)) is not None:
            return err
        doomed = [k for k, c in self.chunks.items() if c.workspace == workspace]
        for k in doomed:
            del self.chunks[k]
        return StoreResult.ok(len(doomed))

    async def get_user_profile(self):
        if (err := self._enter("get_user_profile")) is not None:
            return err
        return StoreResult.ok(list(self.profile.values()))

    async def get_user_profile_by_category(self, category):
        if (err := self._enter("get_user_profile_by_category", category)) is not None:
            return err
        return StoreResult.ok([e for e in self.profile.values() if e.category == category])

    async def upsert_user_profile(self, *, id, category, key, value, confidence=None):
        if (err := self._enter("upsert_user_profile", id, category, key, value, confidence)) is not None:
            return err
        existing = self.profile.get(id)
        if existing is None:
            self.profile[id] = UserProfileEntry(
                id=id,
                category=category,
                key=key,
                value=value,
                confidence=0.5 if confidence is None else confidence,
            )
        else:
            existing.value = value
            if confidence is not None:
                existing.confidence = confidence
            existing.evidence_count += 1
            existing.updated_at = utcnow()
        return StoreResult.ok()

    async def delete_user_profile_entry(self, entry_id):
        if (err := self._enter("delete_user_profile_entry", entry_id)) is not None:
            return err
        return StoreResult.ok(self.profile.pop(entry_id, None) is not None)

    async def clear_user_profile(self):
        if (err := self._enter("clear_user_profile")) is not None:
            return err
        count = len(self.profile)
        self.profile.clear()
        return StoreResult.ok(count)


@pytest.fixture
def store() -> FakeMemoryStore:
    return FakeMemoryStore()
