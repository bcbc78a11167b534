"""Unit tests for settings."""
import pytest

from relay_sync.config import Settings, get_settings
from relay_sync.models import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ("RELAY_URL", "RELAY_SYNC_RELAY_URL", "RELAY_SYNC_PAGE_SIZE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        """Unset options take their documented defaults."""
        settings = Settings()
        assert settings.relay_url is None
        assert settings.page_size == 20
        assert settings.comment_limit == 100
        assert settings.post_scan_limits == (1000, 5000)
        assert settings.request_timeout == 10.0

    def test_relay_url_from_env(self, monkeypatch):
        """RELAY_URL is read from the environment."""
        monkeypatch.setenv("RELAY_URL", "wss://env.relay")
        assert Settings().require_relay_url() == "wss://env.relay"

    def test_prefixed_relay_url(self, monkeypatch):
        """The prefixed RELAY_SYNC_RELAY_URL is accepted too."""
        monkeypatch.setenv("RELAY_SYNC_RELAY_URL", "wss://prefixed.relay")
        assert Settings().relay_url == "wss://prefixed.relay"

    def test_prefixed_option(self, monkeypatch):
        """Other options are read with the RELAY_SYNC_ prefix."""
        monkeypatch.setenv("RELAY_SYNC_PAGE_SIZE", "50")
        assert Settings().page_size == 50

    def test_dotenv_file(self, tmp_path):
        """A .env file in the working directory is honoured."""
        (tmp_path / ".env").write_text("RELAY_URL=wss://dotenv.relay\n")
        assert Settings().relay_url == "wss://dotenv.relay"

    def test_explicit_value(self):
        """An explicit keyword argument wins."""
        assert Settings(relay_url="wss://explicit").relay_url == "wss://explicit"

    def test_missing_relay_url(self):
        """require_relay_url() raises when no endpoint is set."""
        with pytest.raises(ConfigurationError, match="RELAY_URL"):
            Settings().require_relay_url()

    def test_blank_relay_url_is_missing(self):
        """A blank relay URL counts as missing."""
        with pytest.raises(ConfigurationError):
            Settings(relay_url="   ").require_relay_url()

    def test_get_settings_is_cached(self):
        """get_settings() returns one shared instance."""
        assert get_settings() is get_settings()
