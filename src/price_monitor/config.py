"""Configuration management."""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from price_monitor.core import CategoryProfile, DiffThresholds


logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Required setting missing or invalid."""


@dataclass
class KeepaConfig:
    """Keepa API settings."""
    api_key: str = ""
    domain: int = 5
    per_page: int = 100
    max_pages: int = 5
    stats_days: int = 90
    max_retries: int = 5
    initial_retry_delay: float = 2.0
    max_retry_delay: float = 60.0
    request_delay: float = 0.15
    timeout: float = 60.0
    strict_finder: bool = True


@dataclass
class SlackConfig:
    """Slack webhook and message layout settings."""
    webhook_url: Optional[str] = None
    batch_size: int = 3
    graph_image: bool = True
    graph_range_days: int = 3
    graph_width: int = 1200
    graph_height: int = 600


@dataclass
class MonitoringConfig:
    """Scan, admission and notification budget settings."""
    max_notify: int = 50
    profile_limit: int = 10
    candidate_multiplier: int = 10
    min_price: int = 1000
    min_sellers: int = 3
    cooldown_hours: float = 6.0
    state_ttl_days: float = 30.0
    strict_category: bool = True
    only_profile: Optional[str] = None


@dataclass
class ThresholdsConfig:
    """Per-metric diff thresholds."""
    price: int = 200
    rank: int = 5000
    sellers: int = 1
    sold30: int = 5


@dataclass
class PathsConfig:
    """Path settings."""
    state_file: Path = Path("data/state.json")
    logs_dir: Path = Path("logs")


def default_profiles() -> list[CategoryProfile]:
    return [
        CategoryProfile(key="toys", label="おもちゃ", root_category=13299531),
        CategoryProfile(key="games", label="ゲーム", root_category=637394, exclude_digital=True),
        CategoryProfile(key="hobby", label="ホビー", root_category=2277721051),
    ]


@dataclass
class Settings:
    """Application settings."""

    keepa: KeepaConfig = field(default_factory=KeepaConfig)
    slack: SlackConfig = field(default_factory=SlackConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    profiles: list[CategoryProfile] = field(default_factory=default_profiles)

    @property
    def diff_thresholds(self) -> DiffThresholds:
        return DiffThresholds(
            price=self.thresholds.price,
            rank=self.thresholds.rank,
            sellers=self.thresholds.sellers,
            sold30=self.thresholds.sold30,
        )

    @property
    def cooldown_ms(self) -> int:
        return int(self.monitoring.cooldown_hours * 60 * 60 * 1000)

    @property
    def state_ttl_ms(self) -> int:
        return int(self.monitoring.state_ttl_days * 24 * 60 * 60 * 1000)

    @property
    def slack_batch_size(self) -> int:
        return min(max(self.slack.batch_size, 1), 3)

    def validate(self, require_slack: bool = True) -> None:
        """Check required credentials.

        Raises:
            ConfigurationError: if the Keepa key or (when required) the webhook is missing
        """
        if not self.keepa.api_key:
            raise ConfigurationError("KEEPA_API_KEY is required")
        if require_slack and not self.slack.webhook_url:
            raise ConfigurationError("SLACK_WEBHOOK_URL is required")
        if not self.profiles:
            raise ConfigurationError("No category profiles configured")

    def selected_profiles(self) -> list[CategoryProfile]:
        """Profiles to scan this run, in declared order."""
        only = self.monitoring.only_profile
        if not only:
            return list(self.profiles)

        selected = [p for p in self.profiles if p.key == only]
        if not selected:
            known = ", ".join(p.key for p in self.profiles)
            raise ConfigurationError(f"Unknown profile '{only}' (known: {known})")
        return selected


# env var -> (section, attribute)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "KEEPA_DOMAIN": ("keepa", "domain"),
    "FINDER_PER_PAGE": ("keepa", "per_page"),
    "FINDER_MAX_PAGES": ("keepa", "max_pages"),
    "SLACK_BATCH": ("slack", "batch_size"),
    "KEEPA_GRAPH_RANGE": ("slack", "graph_range_days"),
    "KEEPA_GRAPH_IMAGE": ("slack", "graph_image"),
    "STRICT_FINDER": ("keepa", "strict_finder"),
    "STRICT_CATEGORY_MATCH": ("monitoring", "strict_category"),
    "MAX_NOTIFY": ("monitoring", "max_notify"),
    "PROFILE_LIMIT": ("monitoring", "profile_limit"),
    "MIN_PRICE": ("monitoring", "min_price"),
    "MIN_SELLERS": ("monitoring", "min_sellers"),
    "COOLDOWN_HOURS": ("monitoring", "cooldown_hours"),
    "STATE_TTL_DAYS": ("monitoring", "state_ttl_days"),
    "PRICE_DELTA": ("thresholds", "price"),
    "RANK_DELTA": ("thresholds", "rank"),
    "SELLERS_DELTA": ("thresholds", "sellers"),
    "SOLD30_DELTA": ("thresholds", "sold30"),
}


def load_config(config_path: Path = Path("config.yaml")) -> dict:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _parse_profiles(raw: Any) -> list[CategoryProfile]:
    if not isinstance(raw, list):
        raise ConfigurationError("'profiles' must be a list")

    profiles = []
    for entry in raw:
        try:
            profiles.append(CategoryProfile(
                key=str(entry["key"]),
                label=str(entry.get("label") or entry["key"]),
                root_category=int(entry["root_category"]),
                exclude_digital=bool(entry.get("exclude_digital", False)),
                selection=dict(entry.get("selection") or {}),
                limit=int(entry["limit"]) if entry.get("limit") is not None else None,
            ))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid profile entry {entry!r}: {e}") from e
    return profiles


def _coerce(field_type: Any, value: Any) -> Any:
    """Convert a raw YAML/env value to a dataclass field's declared type.

    Raises:
        ValueError: if the value cannot be converted
    """
    if value is None:
        return None
    if field_type is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("on", "true", "yes", "1"):
            return True
        if text in ("off", "false", "no", "0"):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if field_type is int:
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return int(value)
    if field_type is float:
        return float(value)
    if field_type is Path:
        return Path(value)
    return value


def _apply_section(section: Any, values: Any) -> None:
    if not isinstance(values, dict):
        raise ConfigurationError(f"Section {type(section).__name__} must be a mapping")
    types = {f.name: f.type for f in fields(section)}
    for key, value in values.items():
        if key not in types:
            logger.warning("Ignoring unknown setting %s.%s", type(section).__name__, key)
            continue
        try:
            setattr(section, key, _coerce(types[key], value))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {type(section).__name__}.{key}: {e}") from e


def _env_override(name: str, section: Any, attr: str) -> None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return
    field_type = {f.name: f.type for f in fields(section)}[attr]
    try:
        setattr(section, attr, _coerce(field_type, raw.strip()))
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)


def get_settings(config_path: Path = Path("config.yaml")) -> Settings:
    """Get application settings from YAML config and environment."""
    load_dotenv()
    config = load_config(config_path)

    settings = Settings()

    # Apply YAML config
    for name in ("keepa", "slack", "monitoring", "thresholds", "paths"):
        if name in config:
            _apply_section(getattr(settings, name), config[name] or {})

    if "profiles" in config:
        settings.profiles = _parse_profiles(config["profiles"])

    # Environment overrides
    for env_name, (section_name, attr) in ENV_OVERRIDES.items():
        _env_override(env_name, getattr(settings, section_name), attr)

    settings.keepa.api_key = os.getenv("KEEPA_API_KEY", settings.keepa.api_key)
    settings.slack.webhook_url = os.getenv("SLACK_WEBHOOK_URL") or settings.slack.webhook_url

    if os.getenv("ONLY_PROFILE"):
        settings.monitoring.only_profile = os.getenv("ONLY_PROFILE")
    if os.getenv("STATE_FILE"):
        settings.paths.state_file = Path(os.environ["STATE_FILE"])
    if os.getenv("LOGS_DIR"):
        settings.paths.logs_dir = Path(os.environ["LOGS_DIR"])

    return settings
