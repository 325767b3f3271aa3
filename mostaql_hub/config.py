"""Mostaql Hub — Configuration Loader.

Loads and validates application configuration from a YAML file.
Resolves environment variables referenced via ${VAR_NAME} or
${VAR_NAME:-default} syntax after loading the project's .env file.
Uses frozen dataclasses for type-safe configuration access.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from mostaql_hub.core.filters import FilterCriteria
from mostaql_hub.core.quiet_hours import QuietHours
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

# ── Path Constants ────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
SETTINGS_PATH = CONFIG_DIR / "settings.yaml"

# ── Environment Variable Pattern ─────────────────────────
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?}")

_DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


# ═══════════════════════════════════════════════════════════
# Configuration Dataclasses
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CategoryConfig:
    """One listing page to monitor."""

    name: str
    url: str
    enabled: bool = True


@dataclass(frozen=True)
class ScraperConfig:
    """Configuration for fetching and scheduling."""

    base_url: str
    categories: list[CategoryConfig]
    scan_interval_seconds: int = 60
    detail_timeout_seconds: float = 3.0
    detail_concurrency: int = 3
    request_delay_seconds: float = 1.0
    max_retries: int = 2
    timeout_seconds: float = 15.0
    user_agents: list[str] = field(default_factory=lambda: [_DEFAULT_USER_AGENT])
    challenge_markers: list[str] = field(default_factory=lambda: ["Cloudflare", "challenge-platform"])
    circuit_failure_threshold: int = 3
    circuit_cooldown_seconds: float = 300.0

    @property
    def enabled_categories(self) -> list[CategoryConfig]:
        return [c for c in self.categories if c.enabled]


@dataclass(frozen=True)
class SeenSetConfig:
    """Dedup memory settings."""

    capacity: int = 500
    remember_rejected: bool = False


@dataclass(frozen=True)
class HubConfig:
    """Push hub server settings."""

    host: str = "0.0.0.0"
    port: int = 8080
    path: str = "/jobNotificationHub"
    send_timeout_seconds: float = 5.0
    heartbeat_seconds: float = 30.0


@dataclass(frozen=True)
class ClientConfig:
    """Hub subscriber (listen mode) settings."""

    server_url: str = "ws://localhost:8080/jobNotificationHub"
    max_reconnect_attempts: int = 10
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    ping_interval_seconds: float = 30.0


@dataclass(frozen=True)
class TelegramConfig:
    """Optional Telegram sink. Blank token or chat id disables it.

    The daily status report fires at daily_report_hour:daily_report_minute
    local time.
    """

    bot_token: str = ""
    chat_id: str = ""
    daily_report_hour: int = 23
    daily_report_minute: int = 55

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


@dataclass(frozen=True)
class TrackedProjectConfig:
    """A project whose status/communications should be watched."""

    url: str
    title: str = ""


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration container."""

    scraper: ScraperConfig
    filters: FilterCriteria
    quiet_hours: QuietHours
    seen_set: SeenSetConfig
    hub: HubConfig
    client: ClientConfig
    telegram: TelegramConfig
    tracked_projects: list[TrackedProjectConfig]
    log_level: str = "INFO"


# ═══════════════════════════════════════════════════════════
# YAML Loading & Environment Variable Resolution
# ═══════════════════════════════════════════════════════════


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${VAR} / ${VAR:-default} references.

    Args:
        value: A string, dict, list, or primitive from parsed YAML.

    Returns:
        The same structure with placeholders replaced.

    Raises:
        ValueError: If a referenced variable is unset and has no default.
    """
    if isinstance(value, str):
        def _substitute(match: re.Match[str]) -> str:
            var_name, default = match.group(1), match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            raise ValueError(
                f"Environment variable '${{{var_name}}}' is required but not set. "
                f"Add it to your .env file or export it in your shell."
            )
        return ENV_VAR_PATTERN.sub(_substitute, value)
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file with UTF-8 encoding.

    Raises:
        FileNotFoundError: If the YAML file does not exist.
        ValueError: If the file is empty or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Configuration file is empty or not a mapping: {path}")

    logger.debug("Loaded configuration from %s", path)
    return data


def _validate_keys(data: dict[str, Any], required: list[str], section: str) -> None:
    """Raise ValueError naming the section if any required key is missing."""
    missing = [key for key in required if key not in data]
    if missing:
        raise ValueError(
            f"Missing required configuration keys in '{section}': {', '.join(missing)}"
        )


# ═══════════════════════════════════════════════════════════
# Dataclass Builders
# ═══════════════════════════════════════════════════════════


def _build_scraper_config(data: dict[str, Any]) -> ScraperConfig:
    """Build a ScraperConfig from the 'scraper' section.

    Categories are a mapping of name → {url, enabled}.
    """
    _validate_keys(data, ["base_url", "categories"], "scraper")

    raw_categories = data["categories"]
    if not isinstance(raw_categories, dict) or not raw_categories:
        raise ValueError("'scraper.categories' must be a non-empty mapping of name → {url, enabled}")

    categories = []
    for name, entry in raw_categories.items():
        _validate_keys(entry, ["url"], f"scraper.categories.{name}")
        categories.append(CategoryConfig(
            name=str(name),
            url=entry["url"],
            enabled=bool(entry.get("enabled", True)),
        ))

    defaults = ScraperConfig(base_url="", categories=[])
    config = ScraperConfig(
        base_url=data["base_url"].rstrip("/"),
        categories=categories,
        scan_interval_seconds=int(data.get("scan_interval_seconds", defaults.scan_interval_seconds)),
        detail_timeout_seconds=float(data.get("detail_timeout_seconds", defaults.detail_timeout_seconds)),
        detail_concurrency=int(data.get("detail_concurrency", defaults.detail_concurrency)),
        request_delay_seconds=float(data.get("request_delay_seconds", defaults.request_delay_seconds)),
        max_retries=int(data.get("max_retries", defaults.max_retries)),
        timeout_seconds=float(data.get("timeout_seconds", defaults.timeout_seconds)),
        user_agents=list(data.get("user_agents") or defaults.user_agents),
        challenge_markers=list(data.get("challenge_markers") or defaults.challenge_markers),
        circuit_failure_threshold=int(data.get("circuit_failure_threshold", defaults.circuit_failure_threshold)),
        circuit_cooldown_seconds=float(data.get("circuit_cooldown_seconds", defaults.circuit_cooldown_seconds)),
    )

    if config.scan_interval_seconds < 1:
        raise ValueError("'scraper.scan_interval_seconds' must be >= 1")
    if config.detail_concurrency < 1:
        raise ValueError("'scraper.detail_concurrency' must be >= 1")
    return config


def _build_filters(data: dict[str, Any]) -> FilterCriteria:
    """Build FilterCriteria from the optional 'filters' section."""
    include = data.get("include_keywords", "")
    exclude = data.get("exclude_keywords", "")
    # Accept YAML lists as well as comma-separated strings
    if isinstance(include, list):
        include = ",".join(str(k) for k in include)
    if isinstance(exclude, list):
        exclude = ",".join(str(k) for k in exclude)

    return FilterCriteria(
        min_budget=float(data.get("min_budget") or 0),
        min_hiring_rate=float(data.get("min_hiring_rate") or 0),
        include_keywords=str(include or ""),
        exclude_keywords=str(exclude or ""),
        max_duration_days=int(data.get("max_duration_days") or 0),
        min_client_age_days=int(data.get("min_client_age_days") or 0),
    )


def _build_quiet_hours(data: dict[str, Any]) -> QuietHours:
    """Build QuietHours from the optional 'quiet_hours' section."""
    return QuietHours.from_strings(
        start=str(data.get("start", "23:00")),
        end=str(data.get("end", "07:00")),
        enabled=bool(data.get("enabled", False)),
    )


def _build_telegram_config(data: dict[str, Any]) -> TelegramConfig:
    hour = int(data.get("daily_report_hour", 23))
    minute = int(data.get("daily_report_minute", 55))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid daily report time in 'telegram': {hour}:{minute:02d}")
    return TelegramConfig(
        bot_token=str(data.get("bot_token") or ""),
        chat_id=str(data.get("chat_id") or ""),
        daily_report_hour=hour,
        daily_report_minute=minute,
    )


def _build_tracked_projects(items: list[Any]) -> list[TrackedProjectConfig]:
    projects = []
    for idx, item in enumerate(items):
        _validate_keys(item, ["url"], f"tracked_projects[{idx}]")
        projects.append(TrackedProjectConfig(url=item["url"], title=str(item.get("title", ""))))
    return projects


def _build_dataclass(cls: type, data: dict[str, Any], section: str) -> Any:
    """Build a flat config dataclass, rejecting unknown keys."""
    known = set(cls.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        raise ValueError(
            f"Unknown configuration keys in '{section}': {', '.join(sorted(unknown))}"
        )
    # Env placeholders always resolve to strings; coerce to the field default's type
    defaults = cls()
    values = {}
    for key, value in data.items():
        default = getattr(defaults, key)
        if isinstance(value, str) and isinstance(default, bool):
            value = value.strip().lower() in ("1", "true", "yes", "on")
        elif isinstance(value, str) and isinstance(default, (int, float)):
            value = type(default)(value)
        values[key] = value
    return cls(**values)


# ═══════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════


def build_config(settings: dict[str, Any]) -> AppConfig:
    """Build a validated AppConfig from an already-resolved settings dict.

    Args:
        settings: Parsed settings mapping (env vars resolved).

    Returns:
        A fully validated AppConfig instance.

    Raises:
        ValueError: If required fields are missing or invalid.
    """
    _validate_keys(settings, ["scraper"], "settings")

    config = AppConfig(
        scraper=_build_scraper_config(settings["scraper"]),
        filters=_build_filters(settings.get("filters") or {}),
        quiet_hours=_build_quiet_hours(settings.get("quiet_hours") or {}),
        seen_set=_build_dataclass(SeenSetConfig, settings.get("seen_set") or {}, "seen_set"),
        hub=_build_dataclass(HubConfig, settings.get("hub") or {}, "hub"),
        client=_build_dataclass(ClientConfig, settings.get("client") or {}, "client"),
        telegram=_build_telegram_config(settings.get("telegram") or {}),
        tracked_projects=_build_tracked_projects(settings.get("tracked_projects") or []),
        log_level=str((settings.get("logging") or {}).get("level", "INFO")).upper(),
    )

    if config.seen_set.capacity < 1:
        raise ValueError("'seen_set.capacity' must be >= 1")
    return config


def load_config(
    settings_path: Path | None = None,
    env_path: Path | None = None,
) -> AppConfig:
    """Load the complete application configuration.

    Args:
        settings_path: Override path to settings.yaml. Defaults to config/settings.yaml.
        env_path: Override path to .env file. Defaults to project root .env.

    Returns:
        A fully validated AppConfig instance.

    Raises:
        FileNotFoundError: If the settings file is missing.
        ValueError: If required fields are missing or env vars are unset.
    """
    env_file = env_path or (PROJECT_ROOT / ".env")
    load_dotenv(env_file)
    logger.debug("Loaded environment from %s", env_file)

    settings = _resolve_env_vars(_load_yaml(settings_path or SETTINGS_PATH))
    config = build_config(settings)

    logger.info("Configuration loaded successfully")
    logger.debug(
        "Categories: %s",
        ", ".join(c.name for c in config.scraper.enabled_categories) or "none",
    )
    logger.debug("Scan interval: %ds", config.scraper.scan_interval_seconds)
    logger.debug("Telegram sink: %s", "enabled" if config.telegram.enabled else "disabled")
    return config
