"""Tests for configuration loading."""

from unittest.mock import patch

from portal.config import DatabaseConfig, PortalConfig, load_config
from portal.db.connection import _engine_options, get_database_url


class TestConfig:
    def test_defaults(self):
        config = PortalConfig()
        assert config.notification.preferences.batch_limit == 10
        assert config.notification.preferences.billing_reminder_days == [7, 3, 1, 0]
        assert config.notification.channels.meta.api_version == "v21.0"
        assert config.notification.preferences.quiet_hours.enabled is False
        assert config.auth.algorithm == "HS256"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "portal.yml"
        path.write_text(
            "site_url: https://portal.example\n"
            "notification:\n"
            "  preferences:\n"
            "    chat_bundle_minutes: 2\n"
        )
        config = load_config(str(path))
        assert config.site_url == "https://portal.example"
        assert config.notification.preferences.chat_bundle_minutes == 2

    @patch.dict("os.environ", {"CONFIG__NOTIFICATION__PREFERENCES__BATCH_LIMIT": "25"})
    def test_env_override(self):
        config = load_config("/nonexistent.yml")
        assert config.notification.preferences.batch_limit == 25

    @patch.dict("os.environ", {"CONFIG__NOTIFICATION__CHANNELS__META__ENABLED": "false"})
    def test_env_bool_override(self):
        assert load_config("/nonexistent.yml").notification.channels.meta.enabled is False

    @patch.dict("os.environ", {"META_ACCESS_TOKEN": "from-env", "CRON_SECRET": "s3cret"})
    def test_secret_env_vars(self):
        config = load_config("/nonexistent.yml")
        assert config.notification.channels.meta.access_token == "from-env"
        assert config.auth.cron_secret == "s3cret"

    @patch.dict("os.environ", {"WBIZTOOL_API_KEY": "from-env"})
    def test_yaml_secret_wins_over_env(self, tmp_path):
        path = tmp_path / "portal.yml"
        path.write_text(
            "notification:\n  channels:\n    wbiztool:\n      api_key: from-yaml\n"
        )
        assert load_config(str(path)).notification.channels.wbiztool.api_key == "from-yaml"


class TestDatabaseSettings:
    def test_url_from_config(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = DatabaseConfig(url="sqlite:///tmp/portal.db")
        assert get_database_url(settings) == "sqlite+aiosqlite:///tmp/portal.db"

    @patch.dict("os.environ", {"DATABASE_URL": "postgres://u:p@db/portal"})
    def test_env_url_wins_and_uses_asyncpg(self):
        url = get_database_url(DatabaseConfig(url="sqlite+aiosqlite:///ignored.db"))
        assert url == "postgresql+asyncpg://u:p@db/portal"

    def test_pool_options_only_for_postgres(self):
        settings = DatabaseConfig(pool_size=3, max_overflow=1)
        assert _engine_options("postgresql+asyncpg://db/portal", settings) == {
            "echo": False, "pool_size": 3, "max_overflow": 1,
        }
        assert "pool_size" not in _engine_options("sqlite+aiosqlite:///x.db", settings)
