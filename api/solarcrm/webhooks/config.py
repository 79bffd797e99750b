"""Webhook delivery settings loader."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from solarcrm.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS = (30, 60, 300, 900, 3600)

_POSITIVE_INT_KEYS = (
    "delivery_timeout_seconds",
    "retry_batch_size",
    "sweep_interval_seconds",
    "stale_pending_seconds",
    "response_body_limit",
    "delivered_retention_days",
    "failed_retention_days",
    "max_metadata_keys",
)


@dataclass(frozen=True)
class WebhookSettings:
    """Global webhook delivery settings."""

    max_retries: int = 5
    retry_delays_seconds: tuple[int, ...] = DEFAULT_RETRY_DELAYS
    delivery_timeout_seconds: int = 30
    retry_batch_size: int = 100
    sweep_interval_seconds: int = 30
    stale_pending_seconds: int = 300
    response_body_limit: int = 1000
    delivered_retention_days: int = 30
    failed_retention_days: int = 7
    user_agent: str = "SolarCRM-Webhooks/1.0"
    max_metadata_keys: int = 50

    def retry_delay(self, retry_count: int) -> int:
        """Delay in seconds before retry number ``retry_count`` (1-based).

        Attempts beyond the table reuse its last entry.
        """
        if retry_count < 1:
            raise ValueError("retry_count starts at 1")
        index = min(retry_count, len(self.retry_delays_seconds)) - 1
        return self.retry_delays_seconds[index]


class WebhookConfigLoader:
    """Loads webhook delivery settings from YAML."""

    _settings: WebhookSettings | None = None

    @staticmethod
    def config_path() -> Path:
        return Path(get_settings().WEBHOOK_CONFIG_PATH)

    @classmethod
    def load(cls, path: Path | None = None) -> WebhookSettings:
        """Load settings from the ``settings`` section of the config file."""
        path = path or cls.config_path()

        if not path.exists():
            logger.info("Webhook configuration not found at %s. Using defaults.", path)
            cls._settings = WebhookSettings()
            return cls._settings

        try:
            with open(path) as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse webhook configuration: %s", e)
            cls._settings = WebhookSettings()
            return cls._settings

        try:
            if not isinstance(raw_config, dict):
                raise ValueError("top level must be a mapping")
            cls._settings = cls._parse_settings(raw_config.get("settings") or {})
        except (TypeError, ValueError) as e:
            logger.error("Invalid webhook settings in %s: %s. Using defaults.", path, e)
            cls._settings = WebhookSettings()
            return cls._settings

        logger.info("Loaded webhook settings from %s", path)
        return cls._settings

    @classmethod
    def reload(cls) -> WebhookSettings:
        """Reload settings (for hot-reload)."""
        return cls.load()

    @classmethod
    def get_settings(cls) -> WebhookSettings:
        """Get current settings, loading if necessary."""
        if cls._settings is None:
            cls.load()
        return cls._settings  # type: ignore

    @classmethod
    def _parse_settings(cls, data: dict[str, Any]) -> WebhookSettings:
        """Validate the raw settings mapping."""
        if not isinstance(data, dict):
            raise ValueError("'settings' must be a mapping")

        known = {f.name for f in fields(WebhookSettings)}
        values: dict[str, Any] = {}
        extra = {}
        for key, value in data.items():
            if key in known:
                values[key] = value
            else:
                extra[key] = value
        if extra:
            logger.warning("Ignoring unknown webhook settings: %s", ", ".join(sorted(extra)))

        max_retries = values.get("max_retries", 5)
        if not isinstance(max_retries, int) or max_retries < 0:
            raise ValueError(f"max_retries must be a non-negative integer: {max_retries!r}")

        delays = values.get("retry_delays_seconds", DEFAULT_RETRY_DELAYS)
        if not isinstance(delays, (list, tuple)) or not delays:
            raise ValueError("retry_delays_seconds must be a non-empty list")
        if any(not isinstance(d, int) or d <= 0 for d in delays):
            raise ValueError(f"retry_delays_seconds must be positive integers: {delays!r}")
        values["retry_delays_seconds"] = tuple(delays)

        for key in _POSITIVE_INT_KEYS:
            if key in values and (not isinstance(values[key], int) or values[key] <= 0):
                raise ValueError(f"{key} must be a positive integer: {values[key]!r}")

        if "user_agent" in values and not str(values["user_agent"]).strip():
            raise ValueError("user_agent must not be empty")

        return WebhookSettings(**values)
