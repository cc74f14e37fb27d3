"""Unit tests for Settings defaults and derived properties."""

from __future__ import annotations

from skybridge.config.settings import Settings

_DSN = "postgresql+asyncpg://u:p@localhost/db"


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(database_url=_DSN, environment="development")

        assert settings.search_rate_limit == "10/minute"
        assert settings.follow_rate_limit == "100/hour"
        assert settings.user_session_ttl_days == 7
        assert settings.client_cache_ttl_seconds == 300
        assert settings.default_follow_lexicon == "app.bsky.graph.follow"
        assert settings.oauth_scopes == "atproto transition:generic"

    def test_production_flag_follows_environment(self) -> None:
        prod = Settings(database_url=_DSN, environment="production")
        dev = Settings(database_url=_DSN, environment="development")

        assert prod.is_production
        assert not dev.is_production
