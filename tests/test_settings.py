"""Tests for settings loading."""
import pytest

from wifimgr.config import Settings
from wifimgr.config.settings import DEFAULT_CACHE_TTL, DEFAULT_CONFIG_BACKUPS
from wifimgr.errors import APINotFoundError, InvalidAPIConfigError
from wifimgr.utils.retry import RetryPolicy


SETTINGS_YAML = """
files:
  config_dir: intent
  cache_dir: cache
  backup_dir: backups
  config_backups: 5
backup:
  retention_days: 7
cache:
  ttl: 600
  fetch_device_configs: true
audit:
  enabled: false
defaults:
  results_limit: 50
apis:
  mist-lab:
    vendor: mist
    url: https://api.mist.com
    credentials:
      api_token_env: TEST_MIST_TOKEN
      org_id: org-1234
  meraki-hq:
    vendor: meraki
    results_limit: 500
    cache_ttl: 60
    supported_apply_types: [ap]
"""


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    monkeypatch.delenv("WIFIMGR_CACHE_DIR", raising=False)
    path = tmp_path / "wifimgr.yaml"
    path.write_text(SETTINGS_YAML)
    return path


class TestSettingsFile:
    """Tests for loading wifimgr.yaml."""

    def test_paths_relative_to_file(self, settings_file, tmp_path):
        settings = Settings(str(settings_file))
        assert settings.config_dir == tmp_path / "intent"
        assert settings.cache_dir == tmp_path / "cache"
        assert settings.backup_dir == tmp_path / "backups"

    def test_sections(self, settings_file):
        settings = Settings(str(settings_file))
        assert settings.max_backups == 5
        assert settings.retention_days == 7
        assert settings.cache_ttl == 600
        assert settings.fetch_device_configs
        assert not settings.audit_enabled

    def test_defaults_merged_into_apis(self, settings_file):
        settings = Settings(str(settings_file))
        assert settings.get_api_labels() == ["meraki-hq", "mist-lab"]
        assert settings.get_api_config("mist-lab").results_limit == 50
        # an explicit value wins over defaults
        meraki = settings.get_api_config("meraki-hq")
        assert meraki.results_limit == 500
        assert meraki.cache_ttl == 60
        assert meraki.supported_apply_types == ["ap"]

    def test_credentials_from_environment(self, settings_file, monkeypatch):
        monkeypatch.setenv("TEST_MIST_TOKEN", "secret")
        config = Settings(str(settings_file)).get_api_config("mist-lab")
        assert config.get_credential("api_token") == "secret"
        assert config.org_id == "org-1234"
        assert config.get_credential("missing") == ""

    def test_cache_dir_from_environment(self, settings_file, monkeypatch, tmp_path):
        monkeypatch.setenv("WIFIMGR_CACHE_DIR", str(tmp_path / "elsewhere"))
        assert Settings(str(settings_file)).cache_dir == tmp_path / "elsewhere"


class TestAPIEntries:
    """Tests for per-API lookups."""

    def test_unknown_label(self, tmp_path):
        settings = Settings.from_dict({"apis": {"mist-lab": {"vendor": "mist"}}}, tmp_path)
        with pytest.raises(APINotFoundError) as exc_info:
            settings.get_api_config("prod")
        assert exc_info.value.available_apis == ["mist-lab"]

    def test_malformed_entries(self, tmp_path):
        settings = Settings.from_dict(
            {"apis": {"broken": "mist", "no-vendor": {"url": "https://x"}, "ok": {"vendor": "mock"}}},
            tmp_path,
        )
        with pytest.raises(InvalidAPIConfigError, match="must be a mapping"):
            settings.get_api_config("broken")
        with pytest.raises(InvalidAPIConfigError, match="vendor is required"):
            settings.get_api_config("no-vendor")
        assert [c.label for c in settings.get_api_configs()] == ["ok"]

    def test_from_dict_does_not_mutate_input(self, tmp_path):
        data = {"defaults": {"results_limit": 10}, "apis": {"ok": {"vendor": "mock"}}}
        Settings.from_dict(data, tmp_path)
        assert data["apis"]["ok"] == {"vendor": "mock"}


class TestDiscovery:
    """Tests for config file discovery."""

    def test_env_var(self, settings_file, monkeypatch):
        monkeypatch.setenv("WIFIMGR_CONFIG", str(settings_file))
        assert Settings().config_path == str(settings_file)

    def test_env_var_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WIFIMGR_CONFIG", str(tmp_path / "nope.yaml"))
        with pytest.raises(FileNotFoundError, match="WIFIMGR_CONFIG"):
            Settings()

    def test_searches_working_directory(self, settings_file, tmp_path, monkeypatch):
        monkeypatch.delenv("WIFIMGR_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)
        assert Settings().config_dir == tmp_path / "intent"

    def test_not_found(self, tmp_path, monkeypatch):
        monkeypatch.delenv("WIFIMGR_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        with pytest.raises(FileNotFoundError, match="Could not find wifimgr.yaml"):
            Settings()


class TestDefaults:
    """Tests for values absent from the file."""

    def test_empty_settings(self, tmp_path, monkeypatch):
        monkeypatch.delenv("WIFIMGR_CACHE_DIR", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        settings = Settings.from_dict({}, tmp_path)
        assert settings.config_dir == tmp_path
        assert settings.cache_dir == tmp_path / ".wifimgr" / "cache"
        assert settings.backup_dir is None
        assert settings.max_backups == DEFAULT_CONFIG_BACKUPS
        assert settings.cache_ttl == DEFAULT_CACHE_TTL
        assert not settings.fetch_device_configs
        assert settings.audit_enabled
        assert settings.get_api_labels() == []

    def test_not_a_mapping(self, tmp_path):
        with pytest.raises(ValueError):
            Settings.from_dict(["apis"], tmp_path)


class TestLoggingAndRetry:
    """Tests for the logging and retry sections."""

    def test_defaults(self, tmp_path):
        settings = Settings.from_dict({}, tmp_path)
        assert not settings.logging_enabled
        assert settings.logging_options() == {
            "level": "INFO",
            "max_size_mb": 10,
            "backup_count": 5,
            "console": True,
        }
        assert settings.retry_policy() == RetryPolicy()

    def test_sections(self, tmp_path):
        settings = Settings.from_dict(
            {
                "logging": {"enabled": True, "level": "debug", "file": "logs/wifimgr.log", "backups": 2},
                "retry": {"max_attempts": 5, "min_wait": 0, "max_wait": 2},
            },
            tmp_path,
        )
        assert settings.logging_enabled
        options = settings.logging_options()
        assert options["log_file"] == tmp_path / "logs" / "wifimgr.log"
        assert (options["level"], options["backup_count"]) == ("debug", 2)
        policy = settings.retry_policy()
        assert (policy.max_attempts, policy.min_wait, policy.max_wait) == (5, 0, 2)
