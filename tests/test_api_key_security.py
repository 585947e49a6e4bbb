"""Security tests for API key leak prevention.

Covers:
- Secret masking (mask_secret)
- Log redaction (_redact_event)
- Environment variable resolution in ExtractionConfig
"""

import os
from unittest.mock import patch

from mnemo.config.schema import ExtractionConfig, _resolve_env
from mnemo.logging import _redact_event, mask_secret
from mnemo.redaction import REDACTED


# ---------------------------------------------------------------------------
# mask_secret tests
# ---------------------------------------------------------------------------

class TestMaskSecret:
    def test_normal_key(self):
        result = mask_secret("sk-abc123456789xyz")
        assert result == "sk-a****9xyz"

    def test_short_key(self):
        assert mask_secret("short") == "****"

    def test_exactly_8_chars(self):
        assert mask_secret("12345678") == "****"

    def test_9_chars(self):
        result = mask_secret("123456789")
        assert result == "1234****6789"

    def test_empty_string(self):
        assert mask_secret("") == "****"


# ---------------------------------------------------------------------------
# _redact_event (structlog processor) tests
# ---------------------------------------------------------------------------

class TestRedactEvent:
    def test_redacts_string_values(self):
        event = {
            "event": "Extractor initialized",
            "api_key": "sk-abc123456789xyzABCDEF",
            "count": 42,
        }
        result = _redact_event(None, "info", event)
        assert "sk-abc123456789xyzABCDEF" not in result["api_key"]
        assert REDACTED in result["api_key"]
        assert result["count"] == 42  # non-string untouched

    def test_redacts_event_message(self):
        event = {"event": "connecting to postgres://admin:hunter2@db:5432/app"}
        result = _redact_event(None, "warning", event)
        assert "hunter2" not in result["event"]

    def test_leaves_safe_strings(self):
        event = {"event": "hello", "msg": "no secrets here"}
        result = _redact_event(None, "info", event)
        assert result["msg"] == "no secrets here"

    def test_multiple_secrets(self):
        event = {"event": "x", "detail": "key1=sk-aaaa1111222233334444bbbb key2=ghp_" + "B" * 36}
        result = _redact_event(None, "info", event)
        assert "sk-aaaa1111222233334444bbbb" not in result["detail"]
        assert "ghp_" not in result["detail"]


# ---------------------------------------------------------------------------
# _resolve_env tests
# ---------------------------------------------------------------------------

class TestResolveEnv:
    def test_dollar_var(self):
        with patch.dict(os.environ, {"MY_KEY": "resolved_value"}):
            assert _resolve_env("$MY_KEY") == "resolved_value"

    def test_dollar_brace_var(self):
        with patch.dict(os.environ, {"MY_KEY": "resolved_value"}):
            assert _resolve_env("${MY_KEY}") == "resolved_value"

    def test_unset_var_returns_original(self):
        env = os.environ.copy()
        env.pop("NONEXISTENT_VAR_XYZ", None)
        with patch.dict(os.environ, env, clear=True):
            assert _resolve_env("$NONEXISTENT_VAR_XYZ") == "$NONEXISTENT_VAR_XYZ"

    def test_plain_string_unchanged(self):
        assert _resolve_env("sk-plainkey123") == "sk-plainkey123"

    def test_empty_string(self):
        assert _resolve_env("") == ""


# ---------------------------------------------------------------------------
# ExtractionConfig.resolved_api_key tests
# ---------------------------------------------------------------------------

class TestExtractionConfigResolvedKey:
    def test_plain_key(self):
        c = ExtractionConfig(api_key="sk-test123")
        assert c.resolved_api_key == "sk-test123"

    def test_env_var_reference(self):
        with patch.dict(os.environ, {"GEMINI_KEY": "from-env"}):
            c = ExtractionConfig(api_key="$GEMINI_KEY")
            assert c.resolved_api_key == "from-env"

    def test_empty_key(self):
        assert ExtractionConfig().resolved_api_key == ""
