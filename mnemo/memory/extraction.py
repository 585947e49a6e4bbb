"""Post-conversation memory extraction.

When a conversation ends, its transcript is sent to a small, fast model that
returns a summary plus decisions, lessons and observed preferences. Each piece
is fanned out into the memory service. Extraction is best-effort: nothing here
raises into the caller.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import litellm
from litellm import acompletion

from mnemo.config.schema import ExtractionConfig
from mnemo.degradation import DegradationRegistry, default_registry
from mnemo.logging import get_logger, mask_secret
from mnemo.memory.models import (
    Conversation,
    ConversationMessage,
    MemorySource,
    MemoryType,
    PreferenceObservation,
    StructuredExtraction,
)
from mnemo.memory.service import MemoryService
from mnemo.redaction import sanitize

logger = get_logger(__name__)

SERVICE_NAME = "SessionSummary"

EXTRACTION_PROMPT = """Analyze this conversation and extract structured memories. Return ONLY valid JSON, no markdown.

Conversation: "{label}"

{transcript}

Return JSON in this exact format:
{{
  "summary": "1-3 sentence summary of what happened",
  "decisions": ["decision 1", "decision 2"],
  "lessons": ["lesson learned 1"],
  "preferences": [{{"category": "communication", "key": "style", "value": "concise"}}],
  "tags": ["tag1", "tag2"]
}}

Rules:
- summary: Brief factual summary of the session
- decisions: Architectural or technical decisions made (empty array if none)
- lessons: Mistakes made, corrections, things to remember (empty array if none)
- preferences: Observed user preferences about communication style, tools, patterns (empty array if uncertain)
  - Categories: communication, workflow, tools, code-style, preferences
- tags: 2-5 topic tags for this conversation
- Keep everything concise. Each item should be 1-2 sentences max.
- If the conversation is casual/short, most arrays should be empty."""

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)

# Environment variables consulted when no key is configured.
_API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY")


class SessionExtractor(Protocol):
    async def extract(self, transcript: str, label: str) -> StructuredExtraction | None:
        ...


class ConversationSource(Protocol):
    """Read access to the host application's conversation database."""

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        ...

    async def get_messages(
        self, conversation_id: str, limit: int, ascending: bool = True
    ) -> list[ConversationMessage]:
        """Return the most recent *limit* messages, oldest first when *ascending*."""


# ----------------------------------------------------------------------
# Transcript and payload handling
# ----------------------------------------------------------------------


def build_transcript(messages: Iterable[ConversationMessage], max_message_chars: int = 500) -> str:
    """Render text messages as ``User:``/``Assistant:`` lines, redacted."""
    lines: list[str] = []
    for msg in messages:
        if msg.type != "text" or not msg.content:
            continue
        role = "User" if msg.position == "right" else "Assistant"
        content = msg.content
        if len(content) > max_message_chars:
            content = content[:max_message_chars] + "..."
        lines.append(f"{role}: {content}")
    return sanitize("\n\n".join(lines))


def _string_list(value: Any, cap: int) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()][:cap]


def parse_extraction(
    raw: str | None,
    *,
    max_decisions: int = 5,
    max_lessons: int = 5,
    max_preferences: int = 10,
    max_tags: int = 5,
) -> StructuredExtraction | None:
    """Decode and validate an extraction payload.

    Decoding is strict: a truncated or otherwise malformed payload yields
    ``None`` rather than a partially recovered object. Requires a non-empty
    string ``summary`` and a ``decisions`` list.
    """
    if not raw or not raw.strip():
        return None

    text = raw.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        return None
    if not isinstance(data.get("decisions"), list):
        return None

    preferences: list[PreferenceObservation] = []
    raw_prefs = data.get("preferences")
    for pref in raw_prefs if isinstance(raw_prefs, list) else []:
        if not isinstance(pref, dict):
            continue
        category, key, value = pref.get("category"), pref.get("key"), pref.get("value")
        if not (category and key and value):
            continue
        preferences.append(PreferenceObservation(category=str(category), key=str(key), value=str(value)))

    return StructuredExtraction(
        summary=summary.strip(),
        decisions=_string_list(data.get("decisions"), max_decisions),
        lessons=_string_list(data.get("lessons"), max_lessons),
        preferences=preferences[:max_preferences],
        tags=_string_list(data.get("tags"), max_tags),
    )


# ----------------------------------------------------------------------
# LLM-backed extractor
# ----------------------------------------------------------------------


class LiteLLMExtractor:
    """Extraction function backed by ``litellm.acompletion``."""

    def __init__(
        self,
        model: str = "gemini/gemini-2.0-flash",
        api_key: str | None = None,
        api_base: str | None = None,
        *,
        max_tokens: int = 1000,
        temperature: float = 0.1,
        max_decisions: int = 5,
        max_lessons: int = 5,
        max_preferences: int = 10,
        max_tags: int = 5,
    ):
        self.model = model
        self.api_key = api_key or next(
            (os.environ[name] for name in _API_KEY_ENV_VARS if os.environ.get(name)), None
        )
        self.api_base = api_base
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._caps = {
            "max_decisions": max_decisions,
            "max_lessons": max_lessons,
            "max_preferences": max_preferences,
            "max_tags": max_tags,
        }

        litellm.suppress_debug_info = True
        litellm.drop_params = True

        if self.api_key:
            logger.info("Extractor initialized", model=model, api_key=mask_secret(self.api_key))

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> LiteLLMExtractor:
        return cls(
            model=config.model,
            api_key=config.resolved_api_key or None,
            api_base=config.api_base,
            max_tokens=config.max_output_tokens,
            temperature=config.temperature,
            max_decisions=config.max_decisions,
            max_lessons=config.max_lessons,
            max_preferences=config.max_preferences,
            max_tags=config.max_tags,
        )

    async def extract(self, transcript: str, label: str) -> StructuredExtraction | None:
        if not self.api_key:
            logger.debug("No extraction API key configured, skipping")
            return None

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "user", "content": EXTRACTION_PROMPT.format(label=label, transcript=transcript)}
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "api_key": self.api_key,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base

        response = await acompletion(**kwargs)
        text = (response.choices[0].message.content or "").strip()
        if not text:
            return None

        extraction = parse_extraction(text, **self._caps)
        if extraction is None:
            logger.warning("Extraction payload failed validation", preview=text[:200])
        return extraction


# ----------------------------------------------------------------------
# Orchestration
# ----------------------------------------------------------------------


@dataclass
class ExtractionOutcome:
    """What a single extraction run did.

    ``status`` is one of ``skipped``, ``fallback``, ``extracted`` or ``failed``.
    """

    status: str
    reason: str | None = None
    summary_ids: list[str] = field(default_factory=list)
    decision_ids: list[str] = field(default_factory=list)
    lesson_ids: list[str] = field(default_factory=list)
    preferences_learned: int = 0


class SessionSummaryExtractor:
    """Turns a finished conversation into stored memories."""

    def __init__(
        self,
        service: MemoryService,
        conversations: ConversationSource,
        extractor: SessionExtractor,
        config: ExtractionConfig | None = None,
        degradation: DegradationRegistry | None = None,
    ):
        self.service = service
        self.conversations = conversations
        self.extractor = extractor
        self.config = config or ExtractionConfig()
        self.degradation = degradation or default_registry

    async def extract_session_memories(self, conversation_id: str) -> ExtractionOutcome:
        try:
            return await self._extract(conversation_id)
        except Exception as e:
            logger.warning("Session extraction failed (non-critical)", conversation_id=conversation_id, error=str(e))
            self.degradation.report_degraded(SERVICE_NAME, "Memory extraction failed")
            return ExtractionOutcome(status="failed", reason=str(e))

    async def _extract(self, conversation_id: str) -> ExtractionOutcome:
        conversation = await self.conversations.get_conversation(conversation_id)
        if conversation is None:
            return ExtractionOutcome(status="skipped", reason="conversation not found")

        # Newest first so the window is the tail of the conversation, then
        # back to chronological order for the transcript.
        recent = await self.conversations.get_messages(
            conversation_id, self.config.message_window, ascending=False
        )
        messages = list(reversed(recent))
        if len(messages) < self.config.min_messages:
            return ExtractionOutcome(status="skipped", reason="too few messages")

        transcript = build_transcript(messages, self.config.max_message_chars)
        if len(transcript) < self.config.min_transcript_chars:
            return ExtractionOutcome(status="skipped", reason="transcript too short")

        workspace = conversation.workspace
        try:
            extraction = await asyncio.wait_for(
                self.extractor.extract(transcript, conversation.name),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Session extraction timed out", conversation_id=conversation_id, timeout=self.config.timeout)
            self.degradation.report_degraded(SERVICE_NAME, "Memory extraction timed out")
            extraction = None

        if extraction is None:
            ids = await self.service.store_session_summary(
                f"Session: {conversation.name}",
                workspace=workspace,
                conversation_id=conversation_id,
                tags=["auto-summary", "fallback"],
            )
            return ExtractionOutcome(status="fallback", summary_ids=ids)

        outcome = ExtractionOutcome(status="extracted")
        outcome.summary_ids = await self.service.store_session_summary(
            extraction.summary,
            workspace=workspace,
            conversation_id=conversation_id,
            tags=extraction.tags or None,
        )
        for decision in extraction.decisions:
            outcome.decision_ids += await self.service.store_memory(
                decision,
                MemoryType.DECISION,
                workspace=workspace,
                conversation_id=conversation_id,
                source=MemorySource.AUTO,
                tags=["decision", *extraction.tags],
                importance=7,
            )
        for lesson in extraction.lessons:
            outcome.lesson_ids += await self.service.store_memory(
                lesson,
                MemoryType.LESSON,
                workspace=workspace,
                conversation_id=conversation_id,
                source=MemorySource.AUTO,
                tags=["lesson", *extraction.tags],
                importance=8,
            )
        for pref in extraction.preferences:
            if await self.service.learn_preference(pref.category, pref.key, pref.value):
                outcome.preferences_learned += 1

        self.degradation.report_healthy(SERVICE_NAME)
        logger.info(
            "Session memories extracted",
            conversation=conversation.name,
            decisions=len(extraction.decisions),
            lessons=len(extraction.lessons),
            preferences=len(extraction.preferences),
        )
        return outcome
