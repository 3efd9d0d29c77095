"""Application settings loaded from YAML configuration."""
import copy
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import APINotFoundError, InvalidAPIConfigError
from ..utils.retry import RetryPolicy
from ..vendors.models import APIConfig

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = "~/.wifimgr/cache"
DEFAULT_CACHE_TTL = 86400
DEFAULT_CONFIG_BACKUPS = 10
DEFAULT_RETENTION_DAYS = 30
DEFAULT_LOG_MAX_SIZE_MB = 10
DEFAULT_LOG_BACKUPS = 5
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_MIN_WAIT = 1.0
DEFAULT_RETRY_MAX_WAIT = 10.0


class Settings:
    """Settings loaded from wifimgr.yaml.

    ```yaml
    files:
      config_dir: ./intent
      site_configs: [lab.yaml, hq.yaml]
      cache_dir: ~/.wifimgr/cache
      backup_dir: null          # alongside the live file
      config_backups: 10
    backup:
      retention_days: 30
    cache:
      ttl: 86400                # 0 = never stale
      fetch_device_configs: false
    audit:
      enabled: true
      log_dir: ~/.wifimgr
    logging:
      enabled: false            # attach console/file handlers on start-up
      level: INFO
      file: ~/.wifimgr/wifimgr.log
      max_size_mb: 10
      backups: 5
    retry:
      max_attempts: 3           # per vendor call, timeouts and dropped connections only
      min_wait: 1
      max_wait: 10
    defaults:
      results_limit: 100
    apis:
      mist-lab:
        vendor: mist
        url: https://api.mist.com
        credentials:
          api_token_env: MIST_TOKEN
          org_id: 1234
    ```
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config()
        with open(self.config_path) as f:
            data = yaml.safe_load(f) or {}
        self._init(data, Path(self.config_path).resolve().parent)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Optional[Path] = None) -> "Settings":
        """Build settings from an already-loaded mapping."""
        settings = cls.__new__(cls)
        settings.config_path = None
        settings._init(copy.deepcopy(data), Path(base_dir) if base_dir else Path.cwd())
        return settings

    def _init(self, data: dict[str, Any], base_dir: Path) -> None:
        if not isinstance(data, dict):
            raise ValueError("Settings file must contain a mapping")
        self._config = data
        self.base_dir = base_dir
        self._apply_defaults()

    def _find_config(self) -> str:
        """Find the wifimgr.yaml config file."""
        env_path = os.environ.get("WIFIMGR_CONFIG")
        if env_path:
            if not Path(env_path).exists():
                raise FileNotFoundError(f"WIFIMGR_CONFIG points to a missing file: {env_path}")
            return env_path

        search_paths = [
            Path.cwd() / "wifimgr.yaml",
            Path.cwd() / "configs" / "wifimgr.yaml",
            Path.home() / ".config" / "wifimgr" / "wifimgr.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            "Could not find wifimgr.yaml. Create one in ./wifimgr.yaml or set WIFIMGR_CONFIG"
        )

    def _apply_defaults(self) -> None:
        """Merge ``defaults`` into every API entry."""
        defaults = self._config.get("defaults") or {}
        apis = self._config.get("apis") or {}
        for label, api in apis.items():
            if not isinstance(api, dict):
                logger.warning(f"API '{label}' should be a mapping")
                continue
            for key, value in defaults.items():
                if key not in api:
                    api[key] = copy.deepcopy(value)

    def _section(self, name: str) -> dict[str, Any]:
        section = self._config.get(name) or {}
        return section if isinstance(section, dict) else {}

    def _path(self, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.base_dir / path

    # === Files ===

    @property
    def config_dir(self) -> Path:
        return self._path(self._section("files").get("config_dir") or ".")

    @property
    def site_configs(self) -> list[str]:
        return list(self._section("files").get("site_configs") or [])

    @property
    def cache_dir(self) -> Path:
        env_dir = os.environ.get("WIFIMGR_CACHE_DIR")
        if env_dir:
            return Path(env_dir).expanduser()
        return self._path(self._section("files").get("cache_dir") or DEFAULT_CACHE_DIR)

    @property
    def backup_dir(self) -> Optional[Path]:
        value = self._section("files").get("backup_dir")
        return self._path(value) if value else None

    @property
    def max_backups(self) -> int:
        return int(self._section("files").get("config_backups", DEFAULT_CONFIG_BACKUPS))

    @property
    def retention_days(self) -> int:
        return int(self._section("backup").get("retention_days", DEFAULT_RETENTION_DAYS))

    # === Cache ===

    @property
    def cache_ttl(self) -> int:
        return int(self._section("cache").get("ttl", DEFAULT_CACHE_TTL))

    @property
    def fetch_device_configs(self) -> bool:
        return bool(self._section("cache").get("fetch_device_configs", False))

    # === Audit ===

    @property
    def audit_enabled(self) -> bool:
        return bool(self._section("audit").get("enabled", True))

    @property
    def audit_log_dir(self) -> Optional[str]:
        return self._section("audit").get("log_dir")

    # === Logging ===

    @property
    def logging_enabled(self) -> bool:
        return bool(self._section("logging").get("enabled", False))

    def logging_options(self) -> dict[str, Any]:
        """Keyword arguments for utils.logging_config.setup_logging."""
        section = self._section("logging")
        options: dict[str, Any] = {
            "level": str(section.get("level", "INFO")),
            "max_size_mb": int(section.get("max_size_mb", DEFAULT_LOG_MAX_SIZE_MB)),
            "backup_count": int(section.get("backups", DEFAULT_LOG_BACKUPS)),
            "console": bool(section.get("console", True)),
        }
        if section.get("file"):
            options["log_file"] = self._path(section["file"])
        return options

    # === Retry ===

    def retry_policy(self) -> RetryPolicy:
        section = self._section("retry")
        return RetryPolicy(
            max_attempts=int(section.get("max_attempts", DEFAULT_RETRY_ATTEMPTS)),
            min_wait=float(section.get("min_wait", DEFAULT_RETRY_MIN_WAIT)),
            max_wait=float(section.get("max_wait", DEFAULT_RETRY_MAX_WAIT)),
        )

    # === APIs ===

    def get_api_labels(self) -> list[str]:
        return sorted(self._section("apis"))

    def get_api_config(self, label: str) -> APIConfig:
        """Get the APIConfig for a label (defaults merged).

        Raises:
            APINotFoundError: If the label is not configured
            InvalidAPIConfigError: If the entry is not a mapping
        """
        apis = self._section("apis")
        if label not in apis:
            raise APINotFoundError(label, self.get_api_labels())
        entry = apis[label]
        if not isinstance(entry, dict):
            raise InvalidAPIConfigError(label, "entry must be a mapping")
        if not entry.get("vendor"):
            raise InvalidAPIConfigError(label, "vendor is required")
        return APIConfig.from_dict({**copy.deepcopy(entry), "label": label})

    def get_api_configs(self) -> list[APIConfig]:
        """APIConfig for every well-formed entry; malformed ones are logged and skipped."""
        configs = []
        for label in self.get_api_labels():
            try:
                configs.append(self.get_api_config(label))
            except InvalidAPIConfigError as e:
                logger.error(str(e))
        return configs
