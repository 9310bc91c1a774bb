"""ceremonybot - ceremony calendar and reminder engine.

Expands recurring Scaled Agile ceremonies into occurrences, answers filtered
calendar queries, and runs a background scheduler that turns due reminders
into notifications exactly once.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream colorized output to the console.

    Honors the CEREMONYBOT_DEBUG environment variable (truthy values: "1",
    "true", "yes", "on"), which forces DEBUG verbosity.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("CEREMONYBOT_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output.
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message, with only the level colorized.
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def run_server(args: Optional[object] = None) -> None:
    """Start the HTTP API and notification scheduler until interrupted.

    Args:
        args: Optional argparse namespace carrying --config, --port and --host overrides
    """
    import asyncio
    import os

    _init_logging(os.environ.get("CEREMONYBOT_LOG_LEVEL"))

    from .config_loader import load_config
    from .logging_config import configure_logging
    from .server import start_server

    cfg = load_config(getattr(args, "config", None))
    port = getattr(args, "port", None)
    if port is not None:
        cfg.server_port = port
    host = getattr(args, "host", None)
    if host:
        cfg.server_bind = host

    _init_logging(cfg.log_level)
    configure_logging(debug_mode=cfg.log_level == "DEBUG")

    asyncio.run(start_server(cfg))
