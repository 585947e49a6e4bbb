"""Data models for the memory engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryType:
    """Known memory types. The set is open: stores accept any string."""

    FACT = "fact"
    DECISION = "decision"
    LESSON = "lesson"
    SESSION_SUMMARY = "session_summary"
    CORRECTION = "correction"


class MemorySource:
    USER = "user"
    AUTO = "auto"


@dataclass
class MemoryChunk:
    """A stored unit of memory.

    ``content`` is always sanitized and bounded by the chunk size limit;
    after creation only the access bookkeeping fields change.
    """

    id: str
    content: str
    type: str
    workspace: str | None = None
    conversation_id: str | None = None
    source: str = MemorySource.AUTO
    tags: list[str] = field(default_factory=list)
    importance: int = 5
    access_count: int = 0
    last_accessed_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class UserProfileEntry:
    """A learned user preference, unique per (category, key)."""

    id: str
    category: str
    key: str
    value: str
    confidence: float = 0.5
    evidence_count: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ProfileGroup:
    category: str
    entries: list[UserProfileEntry]


@dataclass
class PreferenceObservation:
    category: str
    key: str
    value: str


@dataclass
class StructuredExtraction:
    """Validated output of a session extraction call. Never persisted as-is."""

    summary: str
    decisions: list[str] = field(default_factory=list)
    lessons: list[str] = field(default_factory=list)
    preferences: list[PreferenceObservation] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass
class StoreResult(Generic[T]):
    """Outcome of a store call: ``success`` plus optional ``data`` / ``error``."""

    success: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> StoreResult[Any]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> StoreResult[Any]:
        return cls(success=False, error=error)


@dataclass
class MemoryStats:
    total_memories: int
    project_memories: int
    global_memories: int
    profile_entries: int
    oldest_memory: datetime | None = None
    newest_memory: datetime | None = None


@dataclass
class Conversation:
    """The slice of a conversation record the session extractor needs."""

    id: str
    name: str
    workspace: str | None = None


@dataclass
class ConversationMessage:
    """A stored chat message. ``position == "right"`` marks the user side."""

    type: str
    position: str
    content: str
    created_at: datetime = field(default_factory=utcnow)
