"""Configuration management for Detectify."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Set

import yaml
from dotenv import load_dotenv

from .constants import FALLBACK_KEYWORDS
from .utils.domains import canonicalize_domain

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024


@dataclass
class Config:
    """Application configuration loaded from environment."""

    # Health / result lookup server
    health_host: str = "0.0.0.0"
    health_port: int = 8081
    health_enabled: bool = True

    # Pattern library
    pattern_refresh_seconds: int = 300

    # Result cache
    cache_ttl_hours: float = 24.0

    # Fetcher
    fetch_timeout: float = 30.0
    fetch_max_attempts: int = 3
    fetch_backoff_base: float = 1.0
    fetch_backoff_max: float = 10.0
    fetch_max_redirects: int = 5
    fetch_max_bytes: int = DEFAULT_MAX_BYTES

    # Batch / outer retry
    batch_size: int = 3
    batch_delay: float = 1.0
    analysis_max_attempts: int = 3
    analysis_retry_delay: float = 1.0
    single_flight: bool = False  # Coalesce concurrent detect() calls per URL

    # Heuristic fallback
    heuristic_fallback_enabled: bool = True
    fallback_keywords: list[str] = field(default_factory=lambda: list(FALLBACK_KEYWORDS))

    # Polling
    poll_interval: float = 2.0
    poll_max_attempts: int = 30

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    config_dir: Path = field(default_factory=lambda: Path("./config"))
    database_path: Optional[Path] = None

    # Loaded lists
    false_positive_domains: Set[str] = field(default_factory=set)

    def __post_init__(self):
        """Ensure paths exist and load lists."""
        self.data_dir = Path(self.data_dir)
        self.config_dir = Path(self.config_dir)
        if self.database_path is None:
            self.database_path = self.data_dir / "detectify.db"
        self.database_path = Path(self.database_path)

        self.data_dir.mkdir(parents=True, exist_ok=True)

        self._load_lists()

    @property
    def patterns_file(self) -> Path:
        return self.config_dir / "patterns.yaml"

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_hours * 3600

    def _load_lists(self):
        """Load the false-positive domain list from the config directory."""
        fp_path = self.config_dir / "false_positives.txt"
        if fp_path.exists():
            raw = self._load_list_file(fp_path)
            self.false_positive_domains |= {canonicalize_domain(item) or item for item in raw}

    @staticmethod
    def _load_list_file(path: Path) -> Set[str]:
        """Load a list file, ignoring comments and empty lines."""
        items = set()
        with open(path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    items.add(line.lower())
        return items


def _load_settings(config_dir: Path) -> dict:
    """Load the optional ``settings`` block of config/patterns.yaml."""
    path = Path(config_dir or ".") / "patterns.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except Exception as exc:
        logger.warning("Failed to parse patterns.yaml: %s", exc)
        return {}

    def _coerce_keywords(raw, default):
        items = [str(item).strip().lower() for item in raw or [] if str(item or "").strip()]
        return items or default

    settings = data.get("settings", {}) if isinstance(data, dict) else {}
    if not isinstance(settings, dict):
        return {}
    return {
        "fallback_keywords": _coerce_keywords(settings.get("fallback_keywords"), list(FALLBACK_KEYWORDS)),
    }


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    config_dir = Path(os.getenv("CONFIG_DIR", "./config"))
    settings = _load_settings(config_dir)
    database_path = os.getenv("DATABASE_PATH", "").strip()

    return Config(
        health_host=os.getenv("HEALTH_HOST", "0.0.0.0"),
        health_port=int(os.getenv("HEALTH_PORT", "8081")),
        health_enabled=_env_bool("HEALTH_ENABLED", "true"),
        pattern_refresh_seconds=int(os.getenv("PATTERN_REFRESH_SECONDS", "300")),
        cache_ttl_hours=float(os.getenv("CACHE_TTL_HOURS", "24")),
        fetch_timeout=float(os.getenv("FETCH_TIMEOUT", "30")),
        fetch_max_attempts=int(os.getenv("FETCH_MAX_ATTEMPTS", "3")),
        fetch_backoff_base=float(os.getenv("FETCH_BACKOFF_BASE", "1.0")),
        fetch_backoff_max=float(os.getenv("FETCH_BACKOFF_MAX", "10")),
        fetch_max_redirects=int(os.getenv("FETCH_MAX_REDIRECTS", "5")),
        fetch_max_bytes=int(os.getenv("FETCH_MAX_BYTES", str(DEFAULT_MAX_BYTES))),
        batch_size=int(os.getenv("BATCH_SIZE", "3")),
        batch_delay=float(os.getenv("BATCH_DELAY", "1.0")),
        analysis_max_attempts=int(os.getenv("ANALYSIS_MAX_ATTEMPTS", "3")),
        analysis_retry_delay=float(os.getenv("ANALYSIS_RETRY_DELAY", "1.0")),
        single_flight=_env_bool("SINGLE_FLIGHT", "false"),
        heuristic_fallback_enabled=_env_bool("HEURISTIC_FALLBACK_ENABLED", "true"),
        fallback_keywords=settings.get("fallback_keywords", list(FALLBACK_KEYWORDS)),
        poll_interval=float(os.getenv("POLL_INTERVAL", "2.0")),
        poll_max_attempts=int(os.getenv("POLL_MAX_ATTEMPTS", "30")),
        data_dir=Path(os.getenv("DATA_DIR", "./data")),
        config_dir=config_dir,
        database_path=Path(database_path) if database_path else None,
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = []
    if config.batch_size < 1:
        errors.append("BATCH_SIZE must be at least 1")
    if config.batch_delay < 0:
        errors.append("BATCH_DELAY must not be negative")
    if config.fetch_max_attempts < 1:
        errors.append("FETCH_MAX_ATTEMPTS must be at least 1")
    if config.analysis_max_attempts < 1:
        errors.append("ANALYSIS_MAX_ATTEMPTS must be at least 1")
    if config.fetch_timeout <= 0:
        errors.append("FETCH_TIMEOUT must be positive")
    if config.fetch_max_bytes <= 0:
        errors.append("FETCH_MAX_BYTES must be positive")
    if config.fetch_max_redirects < 0:
        errors.append("FETCH_MAX_REDIRECTS must not be negative")
    if config.cache_ttl_hours <= 0:
        errors.append("CACHE_TTL_HOURS must be positive")
    if config.poll_max_attempts < 1:
        errors.append("POLL_MAX_ATTEMPTS must be at least 1")
    if not 0 < config.health_port < 65536:
        errors.append("HEALTH_PORT must be a valid TCP port")

    if config.fetch_max_attempts * config.analysis_max_attempts > 12:
        logger.info(
            "Retry budget allows up to %s fetch attempts per functional stage run",
            config.fetch_max_attempts * config.analysis_max_attempts,
        )

    return errors
