"""Split long memory text into bounded chunks at paragraph and sentence boundaries."""

from __future__ import annotations

import re

# ~512 tokens at 4 chars/token
MAX_CHUNK_CHARS = 2048

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


def _pack(pieces: list[str], separator: str, max_chars: int) -> list[str]:
    """Greedily join *pieces* with *separator* into runs no longer than *max_chars*."""
    chunks: list[str] = []
    current = ""
    for piece in pieces:
        if not current:
            current = piece
        elif len(current) + len(separator) + len(piece) <= max_chars:
            current = f"{current}{separator}{piece}"
        else:
            chunks.append(current)
            current = piece
    if current:
        chunks.append(current)
    return chunks


def chunk_text(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[str]:
    """Split *text* into chunks of at most *max_chars* characters.

    Paragraphs (blank-line separated) are packed greedily; a paragraph that
    is itself too long is split on sentence boundaries. A single sentence
    longer than *max_chars* is returned whole rather than cut mid-word.
    """
    if len(text) <= max_chars:
        return [text]

    pieces: list[tuple[str, str]] = []
    for para in _PARAGRAPH_SPLIT_RE.split(text):
        para = para.strip()
        if not para:
            continue
        if len(para) <= max_chars:
            pieces.append((para, "para"))
            continue
        sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(para) if s.strip()]
        for packed in _pack(sentences, " ", max_chars):
            pieces.append((packed, "sentences"))

    chunks: list[str] = []
    run: list[str] = []
    for piece, kind in pieces:
        if kind == "sentences":
            # Sentence runs from an oversized paragraph stand alone.
            if run:
                chunks.extend(_pack(run, "\n\n", max_chars))
                run = []
            chunks.append(piece)
        else:
            run.append(piece)
    if run:
        chunks.extend(_pack(run, "\n\n", max_chars))

    return [c.strip() for c in chunks if c.strip()]
