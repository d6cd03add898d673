"""
config — Loads config.yaml with env var overrides.

Precedence: env vars > config.yaml > defaults
"""
from __future__ import annotations
import os
from pathlib import Path
from dataclasses import dataclass, fields
from typing import get_type_hints
import yaml

from .errors import ConfigError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class Config:
    # Queue documents and output
    shows_dir: str = ""  # empty = use platformdirs data dir
    output_dir: str = "downloads"

    # Download scheduler
    parallel_downloads: int = 3
    min_complete_bytes: int = 1_000_000  # existing file above this is "probably complete"
    retries: int = 0
    retry_backoff_seconds: float = 5.0
    lock_ttl_hours: float = 6.0

    # Crawling (seconds between requests)
    search_delay_seconds: float = 0.8   # prehrajto.cz
    listing_delay_seconds: float = 0.2  # nikee/alyss/sifee
    request_timeout: int = 30
    user_agent: str = DEFAULT_USER_AGENT

    # Quality policy
    quality: str = "highest"
    max_size_mb: float = 0.0

    # Browser
    browser_headless: bool = True
    browser_timeout_ms: int = 120_000

    # Naming
    title_max_len: int = 50
    ascii_filenames: bool = False

    log_level: str = "INFO"

    def shows_path(self) -> Path:
        if self.shows_dir:
            return Path(self.shows_dir).expanduser()
        from .paths import get_dirs
        return get_dirs()["shows"]

    def output_path(self) -> Path:
        return Path(self.output_dir).expanduser()


_ENV_MAP = {
    "TVARCHIVER_SHOWS_DIR": "shows_dir",
    "TVARCHIVER_OUTPUT_DIR": "output_dir",
    "TVARCHIVER_PARALLEL": "parallel_downloads",
    "TVARCHIVER_MIN_COMPLETE_BYTES": "min_complete_bytes",
    "TVARCHIVER_RETRIES": "retries",
    "TVARCHIVER_RETRY_BACKOFF": "retry_backoff_seconds",
    "TVARCHIVER_LOCK_TTL_HOURS": "lock_ttl_hours",
    "TVARCHIVER_SEARCH_DELAY": "search_delay_seconds",
    "TVARCHIVER_LISTING_DELAY": "listing_delay_seconds",
    "TVARCHIVER_TIMEOUT": "request_timeout",
    "TVARCHIVER_USER_AGENT": "user_agent",
    "TVARCHIVER_QUALITY": "quality",
    "TVARCHIVER_MAX_SIZE_MB": "max_size_mb",
    "TVARCHIVER_HEADLESS": "browser_headless",
    "TVARCHIVER_BROWSER_TIMEOUT": "browser_timeout_ms",
    "TVARCHIVER_TITLE_MAX_LEN": "title_max_len",
    "TVARCHIVER_ASCII_FILENAMES": "ascii_filenames",
    "TVARCHIVER_LOG_LEVEL": "log_level",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(attr: str, field_type: type, val):
    try:
        if field_type is bool:
            if isinstance(val, bool):
                return val
            s = str(val).strip().lower()
            if s in _TRUE:
                return True
            if s in _FALSE:
                return False
            raise ValueError(val)
        if field_type is int:
            return int(val)
        if field_type is float:
            return float(val)
        return str(val)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {attr}: {val!r}") from None


def load_config(config_path: str | Path | None = None) -> Config:
    """Load config from YAML file, then override with env vars."""
    cfg = Config()
    hints = get_type_hints(Config)
    types = {f.name: hints[f.name] for f in fields(cfg)}

    # 1. Load from YAML if available
    if config_path is None:
        config_path = os.environ.get("TVARCHIVER_CONFIG", "config.yaml")
    path = Path(config_path)
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping")
        for key, value in data.items():
            key_norm = str(key).replace("-", "_")
            if key_norm in types and value is not None:
                setattr(cfg, key_norm, _coerce(key_norm, types[key_norm], value))

    # 2. Override with env vars (TVARCHIVER_ prefix)
    for env_key, attr in _ENV_MAP.items():
        val = os.environ.get(env_key)
        if val is not None:
            setattr(cfg, attr, _coerce(attr, types[attr], val))

    if cfg.parallel_downloads < 1:
        raise ConfigError("parallel_downloads must be at least 1")
    if cfg.quality not in ("highest", "lowest", "hd-only", "sd-only"):
        raise ConfigError(f"Unknown quality preference: {cfg.quality!r}")

    return cfg
