"""structlog setup shared by the app and its modules."""

import logging

import structlog

from classbooking.config import LOG_JSON, LOG_LEVEL


def resolve_level(level: str) -> int:
    """Numeric level for ``level``, INFO when it is not a known level name."""
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str = LOG_LEVEL, json_output: bool = LOG_JSON) -> None:
    level_no = resolve_level(level)
    logging.basicConfig(format="%(message)s", level=level_no)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
    )

    # Suppress noisy library loggers
    logging.getLogger("pymongo").setLevel(logging.WARNING)
