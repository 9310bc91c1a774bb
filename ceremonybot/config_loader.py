"""ceremonybot.config_loader

Config loader for ceremonybot.

- Reads YAML via PyYAML; files ending in ``.json`` are parsed as JSON.
- ``CEREMONYBOT_<FIELD>`` environment variables override file values.
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "CEREMONYBOT_"
DEFAULT_CONFIG_PATH = Path("ceremonybot") / "config.yaml"

TICK_INTERVAL_MIN = 5
TICK_INTERVAL_MAX = 3600


@dataclass
class Config:
    """Typed configuration for ceremonybot.

    Fields:
        store_path: JSON file holding events, reminders and notifications
        settings_path: JSON file holding notification settings
        tick_interval_seconds: scheduler cadence (5..3600)
        tick_timeout_seconds: upper bound for one scheduler tick
        dispatch_timeout_seconds: upper bound for one sink delivery
        initial_lookback_seconds: first-run window length; defaults to one tick
        write_retries: retries for a failed durable write
        write_retry_backoff_seconds: initial backoff between write retries
        max_occurrences_per_rule: recurrence expansion safety cap
        upcoming_horizon_days: how far ahead the upcoming view looks
        notified_retention_days: how long notified identities and spent one-off
            reminders are kept after their due time
        webhook_url: optional webhook receiving every notification
        server_bind: host to bind the HTTP server to
        server_port: port for the HTTP server
        log_level: logging level name
    """

    store_path: str = "ceremonybot_data/store.json"
    settings_path: str = "ceremonybot_data/notification_settings.json"
    tick_interval_seconds: int = 60
    tick_timeout_seconds: float = 30.0
    dispatch_timeout_seconds: float = 10.0
    initial_lookback_seconds: Optional[int] = None
    write_retries: int = 3
    write_retry_backoff_seconds: float = 0.5
    max_occurrences_per_rule: int = 50_000
    upcoming_horizon_days: int = 14
    notified_retention_days: int = 30
    webhook_url: Optional[str] = None
    server_bind: str = "127.0.0.1"
    server_port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced; values that cannot be coerced fall back
        to the default with a warning. tick_interval_seconds is clamped to
        5..3600.
        """
        if data is None:
            data = {}
        defaults = cls()

        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

        def _coerce_int(key: str, default: int, minimum: Optional[int] = None) -> int:
            raw = data.get(key, default)
            try:
                value = int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default
            if minimum is not None and value < minimum:
                logger.warning("Config %s=%d below minimum; coercing to %d", key, value, minimum)
                return minimum
            return value

        def _coerce_float(key: str, default: float) -> float:
            raw = data.get(key, default)
            try:
                value = float(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not a number; using default %.1f", key, raw, default)
                return default
            if value <= 0:
                logger.warning("Config %s=%r must be positive; using default %.1f", key, raw, default)
                return default
            return value

        tick = _coerce_int("tick_interval_seconds", defaults.tick_interval_seconds)
        if tick < TICK_INTERVAL_MIN:
            logger.warning("tick_interval_seconds %d below minimum; coercing to %d", tick, TICK_INTERVAL_MIN)
            tick = TICK_INTERVAL_MIN
        elif tick > TICK_INTERVAL_MAX:
            logger.warning("tick_interval_seconds %d above maximum; coercing to %d", tick, TICK_INTERVAL_MAX)
            tick = TICK_INTERVAL_MAX

        lookback: Optional[int] = None
        if data.get("initial_lookback_seconds") is not None:
            lookback = _coerce_int("initial_lookback_seconds", tick, minimum=0)

        webhook_url = data.get("webhook_url")
        webhook_url = str(webhook_url) if webhook_url else None

        log_level = data.get("log_level", defaults.log_level)
        log_level = str(log_level).upper() if log_level is not None else defaults.log_level

        return cls(
            store_path=str(data.get("store_path") or defaults.store_path),
            settings_path=str(data.get("settings_path") or defaults.settings_path),
            tick_interval_seconds=tick,
            tick_timeout_seconds=_coerce_float("tick_timeout_seconds", defaults.tick_timeout_seconds),
            dispatch_timeout_seconds=_coerce_float(
                "dispatch_timeout_seconds", defaults.dispatch_timeout_seconds
            ),
            initial_lookback_seconds=lookback,
            write_retries=_coerce_int("write_retries", defaults.write_retries, minimum=0),
            write_retry_backoff_seconds=_coerce_float(
                "write_retry_backoff_seconds", defaults.write_retry_backoff_seconds
            ),
            max_occurrences_per_rule=_coerce_int(
                "max_occurrences_per_rule", defaults.max_occurrences_per_rule, minimum=1
            ),
            upcoming_horizon_days=_coerce_int(
                "upcoming_horizon_days", defaults.upcoming_horizon_days, minimum=1
            ),
            notified_retention_days=_coerce_int(
                "notified_retention_days", defaults.notified_retention_days, minimum=1
            ),
            webhook_url=webhook_url,
            server_bind=str(data.get("server_bind") or defaults.server_bind),
            server_port=_coerce_int("server_port", defaults.server_port),
            log_level=log_level,
        )


def env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Collect ``CEREMONYBOT_<FIELD>`` overrides for known Config fields."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, str] = {}
    for f in fields(Config):
        value = environ.get(ENV_PREFIX + f.name.upper())
        if value is not None and value != "":
            overrides[f.name] = value
    return overrides


def _load_mapping(path: Path) -> Any:
    """Load a mapping from a YAML or JSON file; empty files yield an empty dict."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text) if text.strip() else {}
    loaded = yaml.safe_load(text)
    return {} if loaded is None else loaded


def load_config(path: str | Path | None = None, environ: Optional[dict[str, str]] = None) -> Config:
    """Load configuration from a YAML/JSON file and environment, returning a Config.

    Args:
        path: Optional path to the config file. Defaults to
              ./ceremonybot/config.yaml (relative to current working dir).
        environ: Environment mapping used for overrides (defaults to os.environ)

    Returns:
        Config dataclass instance with values from file, environment or defaults.

    Raises:
        ValueError: if the file exists but its top level is not a mapping
        yaml.YAMLError: if the YAML cannot be parsed
    """
    p = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_PATH
    logger.debug("Attempting to load config from %s", p)

    raw: Any = {}
    if p.exists():
        raw = _load_mapping(p)
        if not isinstance(raw, dict):
            logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
            raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
        logger.info("Loaded configuration from %s", p)
    else:
        logger.info("Config file %s not found; using defaults", p)

    overrides = env_overrides(environ)
    if overrides:
        logger.debug("Environment overrides: %s", ", ".join(sorted(overrides)))
    cfg = Config.from_dict({**raw, **overrides})
    logger.debug("Configuration values: %s", cfg)
    return cfg
