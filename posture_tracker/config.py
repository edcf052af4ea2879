from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, TypeVar

from .env import get_env

try:  # pragma: no cover - Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore

LOGGER = logging.getLogger(__name__)

_Section = TypeVar("_Section")


@dataclass(frozen=True)
class SmoothingConfig:
    window_size: int = 5
    confidence_threshold: float = 0.5
    consistency_window: int = 10


@dataclass(frozen=True)
class NotificationConfig:
    enabled: bool = True
    cooldown_ms: int = 10_000
    trigger_threshold: int = 2
    min_confidence: float = 0.6


@dataclass(frozen=True)
class SessionConfig:
    good_confidence: float = 0.6
    min_duration_minutes: int = 1


@dataclass(frozen=True)
class AdaptiveThresholdConfig:
    initial: float = 0.6
    step: float = 0.01
    lower: float = 0.3
    upper: float = 0.9
    raise_above: float = 0.8
    lower_below: float = 0.5


@dataclass(frozen=True)
class AppConfig:
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    adaptive_threshold: AdaptiveThresholdConfig = field(default_factory=AdaptiveThresholdConfig)
    monitor_interval_seconds: float = 0.1


def configure_logging() -> logging.Logger:
    """Apply `POSTURE_TRACKER_LOG_LEVEL` (or `LOG_LEVEL`) to the package logger."""
    logger = logging.getLogger("posture_tracker")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


def _config_path() -> Path | None:
    """Resolve the TOML configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None

    default_path = Path("config/posture_tracker.toml")
    if default_path.exists():
        return default_path
    return None


def _load_toml(path: Path) -> Mapping[str, Any]:
    if tomllib is None:
        raise RuntimeError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _coerce_section(base: _Section, raw: Any) -> _Section:
    """
    Overlay a TOML table onto a frozen dataclass.

    Each value is coerced to the type of the default it replaces; unknown keys
    are ignored and a value that fails coercion keeps the default.
    """
    if not isinstance(raw, Mapping):
        return base
    updates: dict[str, Any] = {}
    for item in fields(base):  # type: ignore[arg-type]
        if item.name not in raw:
            continue
        default = getattr(base, item.name)
        value = raw[item.name]
        try:
            if isinstance(default, bool):
                coerced: Any = value if isinstance(value, bool) else str(value).strip().lower() in {"1", "true", "yes", "on"}
            elif isinstance(default, int):
                coerced = int(value)
            else:
                coerced = float(value)
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring invalid config value %s=%r", item.name, value)
            continue
        updates[item.name] = coerced
    return replace(base, **updates)  # type: ignore[type-var]


def _validate(config: AppConfig) -> AppConfig:
    smoothing = config.smoothing
    if smoothing.window_size < 1 or smoothing.consistency_window < 1:
        LOGGER.warning("Smoothing windows must be positive; using defaults.")
        smoothing = SmoothingConfig()
    notifications = config.notifications
    if notifications.cooldown_ms < 0 or notifications.trigger_threshold < 1:
        LOGGER.warning("Notification cooldown/trigger out of range; using defaults.")
        notifications = NotificationConfig(enabled=notifications.enabled)
    adaptive = config.adaptive_threshold
    if not adaptive.lower <= adaptive.initial <= adaptive.upper:
        LOGGER.warning("Adaptive threshold bounds are inconsistent; using defaults.")
        adaptive = AdaptiveThresholdConfig()
    interval = config.monitor_interval_seconds if config.monitor_interval_seconds >= 0 else 0.1
    return replace(
        config,
        smoothing=smoothing,
        notifications=notifications,
        adaptive_threshold=adaptive,
        monitor_interval_seconds=interval,
    )


def build_config(raw: Mapping[str, Any]) -> AppConfig:
    """Translate a parsed TOML document into an `AppConfig`."""
    base = AppConfig()
    monitor = raw.get("monitor")
    interval = base.monitor_interval_seconds
    if isinstance(monitor, Mapping) and "interval_seconds" in monitor:
        try:
            interval = float(monitor["interval_seconds"])
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring invalid monitor interval %r", monitor["interval_seconds"])
    config = AppConfig(
        smoothing=_coerce_section(base.smoothing, raw.get("smoothing")),
        notifications=_coerce_section(base.notifications, raw.get("notifications")),
        session=_coerce_section(base.session, raw.get("session")),
        adaptive_threshold=_coerce_section(base.adaptive_threshold, raw.get("adaptive_threshold")),
        monitor_interval_seconds=interval,
    )
    return _validate(config)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return AppConfig()
    data = _load_toml(path)
    return build_config(data)


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    payload = asdict(get_config())
    payload["source"] = str(_config_path() or "defaults")
    return payload
