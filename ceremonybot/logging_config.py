"""
Central logging configuration for ceremonybot.

Keeps third-party libraries at WARNING while letting the ceremonybot loggers
follow the requested verbosity.
"""

import logging
import os
from typing import Optional

_TRUTHY = ("1", "true", "yes", "on")

# Third-party loggers that are noisy at DEBUG/INFO
_QUIET_LOGGERS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "aiohttp.web_log": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}


def debug_requested() -> bool:
    """True when CEREMONYBOT_DEBUG is set to a truthy value."""
    return os.getenv("CEREMONYBOT_DEBUG", "").strip().lower() in _TRUTHY


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logger levels for ceremonybot and its third-party dependencies.

    Args:
        debug_mode: Whether to enable debug logging for ceremonybot modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        CEREMONYBOT_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        CEREMONYBOT_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_log_level = os.getenv("CEREMONYBOT_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif debug_requested():
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    # Handlers are installed by ceremonybot._init_logging; only levels are set here.
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    for logger_name, level in _QUIET_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger("ceremonybot").setLevel(logging.DEBUG if final_debug else logging.INFO)

    if final_debug:
        root_logger.info("Debug logging enabled for ceremonybot modules")
    else:
        root_logger.debug("Production logging configuration applied")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("ceremonybot", "aiohttp.access", "httpx", "asyncio"):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
