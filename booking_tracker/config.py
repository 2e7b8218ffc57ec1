"""
Centralized configuration with environment variable overrides.

Reconnect timing, refund tiers and diagnostics limits are configurable
here. Nothing is hardcoded in the channel or lifecycle logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] [%(booking_id)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class ChannelConfig:
    """Live update channel reconnect settings."""

    reconnect_base_delay_sec: float = _safe_float("RECONNECT_BASE_DELAY", "1.0")
    reconnect_max_delay_sec: float = _safe_float("RECONNECT_MAX_DELAY", "30.0")
    max_reconnect_attempts: int = _safe_int("MAX_RECONNECT_ATTEMPTS", "5")


@dataclass(frozen=True)
class PolicyConfig:
    """Cancellation refund tiers, measured in hours before the scheduled time."""

    full_refund_hours: int = _safe_int("FULL_REFUND_HOURS", "24")
    partial_refund_hours: int = _safe_int("PARTIAL_REFUND_HOURS", "12")
    partial_refund_percent: int = _safe_int("PARTIAL_REFUND_PERCENT", "90")
    late_refund_percent: int = _safe_int("LATE_REFUND_PERCENT", "50")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    channel: ChannelConfig = field(default_factory=ChannelConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "LocalMart")
    diagnostics_max_entries: int = _safe_int("DIAGNOSTICS_MAX_ENTRIES", "200")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.channel.reconnect_base_delay_sec < 0:
        raise ValueError(
            "RECONNECT_BASE_DELAY must be >= 0, "
            f"got {config.channel.reconnect_base_delay_sec}"
        )
    if config.channel.reconnect_max_delay_sec < config.channel.reconnect_base_delay_sec:
        raise ValueError(
            "RECONNECT_MAX_DELAY must be >= RECONNECT_BASE_DELAY, "
            f"got {config.channel.reconnect_max_delay_sec}"
        )
    if config.channel.max_reconnect_attempts < 1:
        raise ValueError(
            f"MAX_RECONNECT_ATTEMPTS must be >= 1, got {config.channel.max_reconnect_attempts}"
        )
    if config.policy.partial_refund_hours < 0:
        raise ValueError(
            f"PARTIAL_REFUND_HOURS must be >= 0, got {config.policy.partial_refund_hours}"
        )
    if config.policy.full_refund_hours < config.policy.partial_refund_hours:
        raise ValueError(
            "FULL_REFUND_HOURS must be >= PARTIAL_REFUND_HOURS, "
            f"got {config.policy.full_refund_hours}"
        )

    for pct_name, pct_value in [
        ("PARTIAL_REFUND_PERCENT", config.policy.partial_refund_percent),
        ("LATE_REFUND_PERCENT", config.policy.late_refund_percent),
    ]:
        if not 0 <= pct_value <= 100:
            raise ValueError(f"{pct_name} must be between 0 and 100, got {pct_value}")

    if config.diagnostics_max_entries < 1:
        raise ValueError(
            f"DIAGNOSTICS_MAX_ENTRIES must be >= 1, got {config.diagnostics_max_entries}"
        )


def build_log_handler() -> logging.Handler:
    """Stream handler that renders the booking id, or "-" outside a booking."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        LOG_FORMAT, datefmt=LOG_DATE_FORMAT, defaults={"booking_id": "-"},
    ))
    return handler


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        handlers=[build_log_handler()],
    )
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()
