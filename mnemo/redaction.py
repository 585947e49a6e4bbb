"""Credential redaction applied to every piece of text before it is persisted.

Patterns are an ordered table of ``(regex, replacement)`` pairs. Each one is
applied as its own substitution pass, so adding a pattern never changes how
the existing ones match.
"""

from __future__ import annotations

import re

REDACTED = "[REDACTED]"

CREDENTIAL_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Generic key/secret/token assignments
    (re.compile(r"(?:api[_-]?key|apikey)\s*[:=]\s*['\"]?[\w\-./]{20,}['\"]?", re.IGNORECASE), REDACTED),
    (re.compile(r"(?:secret[_-]?key|secretkey)\s*[:=]\s*['\"]?[\w\-./]{20,}['\"]?", re.IGNORECASE), REDACTED),
    (re.compile(r"(?:access[_-]?token|accesstoken)\s*[:=]\s*['\"]?[\w\-./]{20,}['\"]?", re.IGNORECASE), REDACTED),
    # Provider key prefixes
    (re.compile(r"sk-[a-zA-Z0-9]{20,}"), REDACTED),           # OpenAI
    (re.compile(r"AIza[a-zA-Z0-9\-_]{35}"), REDACTED),        # Google
    (re.compile(r"sk-ant-[a-zA-Z0-9\-_]{20,}"), REDACTED),    # Anthropic
    (re.compile(r"ghp_[a-zA-Z0-9]{36}"), REDACTED),           # GitHub PAT
    (re.compile(r"gho_[a-zA-Z0-9]{36}"), REDACTED),           # GitHub OAuth
    (re.compile(r"xoxb-[a-zA-Z0-9-]+"), REDACTED),            # Slack bot
    (re.compile(r"xoxp-[a-zA-Z0-9-]+"), REDACTED),            # Slack user
    # Passwords and bearer tokens
    # Value class excludes brackets so an already-redacted value never re-matches.
    (re.compile(r"(?:password|passwd|pwd)\s*[:=]\s*['\"]?[^\s'\"\[\]]{8,}['\"]?", re.IGNORECASE), REDACTED),
    (re.compile(r"Bearer\s+[\w\-./=+]{20,}"), REDACTED),
    # Connection strings
    (re.compile(r"(?:mongodb|postgres|mysql|redis)://[^\s'\"]+", re.IGNORECASE), REDACTED),
    # PEM private key headers
    (re.compile(r"-----BEGIN (?:RSA |EC |DSA )?PRIVATE KEY-----"), REDACTED),
    # AWS access key ids
    (re.compile(r"AKIA[A-Z0-9]{16}"), REDACTED),
    # JWTs
    (re.compile(r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"), REDACTED),
]


def register_pattern(pattern: str | re.Pattern[str], replacement: str = REDACTED) -> None:
    """Append a credential pattern to the redaction table.

    The replacement must not itself match any pattern in the table, or
    ``sanitize`` stops being idempotent.
    """
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
    CREDENTIAL_PATTERNS.append((compiled, replacement))


def sanitize(text: object) -> str:
    """Replace credential-shaped substrings with ``[REDACTED]``.

    Never raises: ``None`` becomes an empty string and other non-string
    values are coerced with ``str``.
    """
    if text is None:
        return ""
    sanitized = text if isinstance(text, str) else str(text)
    for pattern, replacement in CREDENTIAL_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized
