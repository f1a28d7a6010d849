"""
Configuration for the NeighborSync engine
=========================================
Runtime settings for a member's client (broker, timing buffers, scheduler
sizing, sunset lookups) loaded from ``NEIGHBORSYNC_*`` environment variables.
Sets up the logging configuration as well.
"""

import logging
import os
from contextlib import suppress
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from neighborsync.domain.exceptions import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float | None) -> float | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number.") from None


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("NEIGHBORSYNC_ENV", "development"))
    debug: bool = field(default_factory=lambda: _env_bool("NEIGHBORSYNC_DEBUG", False))
    log_level: str = field(default_factory=lambda: os.getenv("NEIGHBORSYNC_LOG_LEVEL", "INFO"))
    log_dir: str = field(default_factory=lambda: os.getenv("NEIGHBORSYNC_LOG_DIR", "logs"))
    state_dir: str = field(
        default_factory=lambda: os.getenv("NEIGHBORSYNC_STATE_DIR", os.path.join(os.getcwd(), "var"))
    )

    # Shared store transport
    mqtt_broker_host: str = field(default_factory=lambda: os.getenv("NEIGHBORSYNC_MQTT_HOST", "localhost"))
    mqtt_broker_port: int = field(default_factory=lambda: _env_int("NEIGHBORSYNC_MQTT_PORT", 1883))
    mqtt_topic_prefix: str = field(default_factory=lambda: os.getenv("NEIGHBORSYNC_MQTT_PREFIX", "neighborsync"))

    # Local controller
    controller_timeout_seconds: float = field(
        default_factory=lambda: _env_float("NEIGHBORSYNC_CONTROLLER_TIMEOUT", 3.0)
    )

    # Sync timing
    command_lead_time_ms: int = field(default_factory=lambda: _env_int("NEIGHBORSYNC_LEAD_TIME_MS", 2000))
    late_grace_ms: int = field(default_factory=lambda: _env_int("NEIGHBORSYNC_LATE_GRACE_MS", 5000))
    leds_per_meter: float = field(default_factory=lambda: _env_float("NEIGHBORSYNC_LEDS_PER_METER", 30.0))
    max_effect_id: int = field(default_factory=lambda: _env_int("NEIGHBORSYNC_MAX_EFFECT_ID", 186))

    # Schedules
    schedule_check_interval_seconds: int = field(
        default_factory=lambda: _env_int("NEIGHBORSYNC_SCHEDULE_CHECK_INTERVAL", 30)
    )
    timezone: str | None = field(default_factory=lambda: os.getenv("NEIGHBORSYNC_TIMEZONE") or None)
    sun_times_api_url: str = field(
        default_factory=lambda: os.getenv("NEIGHBORSYNC_SUN_TIMES_API_URL", "https://api.sunrise-sunset.org/json")
    )
    sun_times_cache_hours: int = field(default_factory=lambda: _env_int("NEIGHBORSYNC_SUN_TIMES_CACHE_HOURS", 24))
    default_latitude: float | None = field(default_factory=lambda: _env_float("NEIGHBORSYNC_LATITUDE", None))
    default_longitude: float | None = field(default_factory=lambda: _env_float("NEIGHBORSYNC_LONGITUDE", None))

    # Local workers
    eventbus_queue_size: int = field(default_factory=lambda: _env_int("NEIGHBORSYNC_EVENTBUS_QUEUE_SIZE", 256))
    eventbus_worker_count: int = field(default_factory=lambda: _env_int("NEIGHBORSYNC_EVENTBUS_WORKER_COUNT", 2))
    scheduler_max_workers: int = field(default_factory=lambda: _env_int("NEIGHBORSYNC_SCHEDULER_MAX_WORKERS", 4))

    def validate(self) -> None:
        """Raise ``ConfigurationError`` listing every invalid setting."""
        problems = []
        if not 0 < self.mqtt_broker_port < 65536:
            problems.append(f"mqtt_broker_port out of range: {self.mqtt_broker_port}")
        if not self.mqtt_topic_prefix or "#" in self.mqtt_topic_prefix or "+" in self.mqtt_topic_prefix:
            problems.append(f"invalid mqtt_topic_prefix: {self.mqtt_topic_prefix!r}")
        if self.controller_timeout_seconds is None or self.controller_timeout_seconds <= 0:
            problems.append("controller_timeout_seconds must be positive")
        if self.command_lead_time_ms < 0:
            problems.append("command_lead_time_ms must not be negative")
        if self.late_grace_ms < 0:
            problems.append("late_grace_ms must not be negative")
        if self.leds_per_meter is None or self.leds_per_meter <= 0:
            problems.append("leds_per_meter must be positive")
        if self.max_effect_id < 0:
            problems.append("max_effect_id must not be negative")
        if self.schedule_check_interval_seconds <= 0:
            problems.append("schedule_check_interval_seconds must be positive")
        if self.eventbus_queue_size <= 0 or self.eventbus_worker_count <= 0:
            problems.append("event bus queue size and worker count must be positive")
        if self.scheduler_max_workers <= 0:
            problems.append("scheduler_max_workers must be positive")
        if (self.default_latitude is None) != (self.default_longitude is None):
            problems.append("default_latitude and default_longitude must be set together")
        if self.timezone:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                problems.append(f"unknown timezone: {self.timezone}")
        if problems:
            raise ConfigurationError("Invalid configuration: " + "; ".join(problems), detail={"problems": problems})


def setup_logging(debug: bool = False, log_dir: str | None = None) -> None:
    """Setup logging configuration."""
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid adding duplicates when called more than once
    has_console = any(getattr(h, "name", "") == "neighborsync_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "neighborsync_file" for h in root.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "neighborsync_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if not has_file:
        directory = log_dir or os.getenv("NEIGHBORSYNC_LOG_DIR", "logs")
        os.makedirs(directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(directory, "neighborsync.log"),
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.name = "neighborsync_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"neighborsync_console", "neighborsync_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    # paho logs every keepalive at DEBUG
    if _env_bool("NEIGHBORSYNC_SILENCE_PAHO", True):
        logging.getLogger("paho").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    config = AppConfig()
    config.validate()
    return config
