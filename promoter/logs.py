"""Structured logging setup."""

import logging
import sys

import structlog

REDACTED = "**********"

# Event keys whose values never reach a log line.
SECRET_KEYS = frozenset({"password", "master_password", "new_password", "secret"})


def redact_secrets(logger, method_name: str, event_dict: dict) -> dict:
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def setup_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """
    Route structlog through stdlib logging on stderr.

    Stdout is left to the terminal output of the CLI.

    Args:
        log_level: Level name, e.g. DEBUG or WARNING; unknown names fall back to INFO
        json_logs: Emit one JSON object per line instead of the console format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
