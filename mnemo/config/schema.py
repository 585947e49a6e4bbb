"""Configuration schema using Pydantic."""

from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel, Field

_ENV_REF_RE = re.compile(r"^\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))$")


def _resolve_env(value: str) -> str:
    """Resolve ``$VAR`` / ``${VAR}`` references; unset or plain values are returned as-is."""
    if not value:
        return value
    m = _ENV_REF_RE.match(value.strip())
    if not m:
        return value
    name = m.group("braced") or m.group("bare")
    return os.environ.get(name, value)


class BudgetConfig(BaseModel):
    """Token budget split across constitution, skills, memory and conversation."""

    total_tokens: int = Field(default=128_000, ge=0)
    constitution_tokens: int = Field(default=500, ge=0)
    skills_max_tokens: int = Field(default=2_000, ge=0)
    memory_max_percent: float = Field(default=0.15, ge=0.0, le=1.0)


class MemoryConfig(BaseModel):
    """Storage and recall settings for the memory service."""

    max_chunk_chars: int = Field(default=2048, gt=0)
    default_importance: int = Field(default=5, ge=0, le=9)
    recall_limit: int = Field(default=20, ge=0)
    context_recall_limit: int = Field(default=15, ge=0)
    keyword_share: float = Field(default=0.7, ge=0.0, le=1.0)
    profile_min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    default_profile_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    db_path: Path = Field(default_factory=lambda: Path.home() / ".mnemo" / "memory.db")


class ExtractionConfig(BaseModel):
    """Session summary extraction (LLM call) settings."""

    model: str = "gemini/gemini-2.0-flash"
    api_key: str = ""
    api_base: str | None = None
    timeout: float = Field(default=15.0, gt=0)
    max_output_tokens: int = Field(default=1000, gt=0)
    temperature: float = 0.1
    message_window: int = Field(default=50, gt=0)
    min_messages: int = Field(default=2, ge=0)
    min_transcript_chars: int = Field(default=100, ge=0)
    max_message_chars: int = Field(default=500, gt=0)
    max_decisions: int = Field(default=5, ge=0)
    max_lessons: int = Field(default=5, ge=0)
    max_preferences: int = Field(default=10, ge=0)
    max_tags: int = Field(default=5, ge=0)

    @property
    def resolved_api_key(self) -> str:
        return _resolve_env(self.api_key)


class LoggingConfig(BaseModel):
    json_output: bool = True
    level: str = "INFO"


class Config(BaseModel):
    """Root configuration for mnemo."""

    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
