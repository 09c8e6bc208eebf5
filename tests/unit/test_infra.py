"""Tests for settings and log redaction."""

from __future__ import annotations

from hymn.infra.logging import redact_secrets
from hymn.infra.settings import Settings


def test_redacts_secret_keys_and_patterns():
    event = {
        "event": "calling upstream",
        "api_key": "sk-live-123",
        "url": "postgresql://user:pass@db/hymn",
        "headers": {"note": "Bearer abc.def"},
    }
    redacted = redact_secrets(None, None, event)

    assert redacted["api_key"] == "***REDACTED***"
    assert "pass" not in redacted["url"]
    assert redacted["headers"]["note"] == "***"
    assert redacted["event"] == "calling upstream"


class TestSettings:
    def test_defaults(self):
        cfg = Settings(_env_file=None, ENV="prod")
        assert cfg.block_duration_minutes == 30
        assert cfg.window_hours == 12
        assert cfg.session_hours == 12
        assert cfg.stale_block_minutes == 0

    def test_collaborator_defaults(self, monkeypatch):
        for name in ("HYMN_CALENDAR_CHECK", "HYMN_TIMEZONE", "NEWS_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        cfg = Settings(_env_file=None, ENV="prod")
        assert cfg.calendar_check == "event_ids"
        assert cfg.timezone == "UTC"
        assert cfg.news_api_key == ""

    def test_collaborator_overrides(self):
        cfg = Settings(
            _env_file=None,
            HYMN_CALENDAR_CHECK="keywords",
            HYMN_TIMEZONE="America/Chicago",
            NEWS_API_KEY="news-key",
        )
        assert cfg.calendar_check == "keywords"
        assert cfg.timezone == "America/Chicago"
        assert cfg.news_api_key == "news-key"

    def test_fail_loudly_outside_prod(self):
        assert Settings(_env_file=None, ENV="test").invariants_fail_loudly is True
        assert Settings(_env_file=None, ENV="prod").invariants_fail_loudly is False
        assert Settings(_env_file=None, ENV="prod", HYMN_STRICT_INVARIANTS=True).invariants_fail_loudly is True
