"""structlog setup shared by the API process and the maintenance scripts.

Application code logs through ``structlog.get_logger(__name__)`` with an event
name and key/value context. Records from the stdlib (uvicorn, stripe, httpx,
sqlalchemy) are routed through the same processors, so every line has the same
shape: JSON in production, colored console output in debug.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "stripe", "anthropic", "aiosqlite")


def add_correlation_id(logger, method, event_dict):
    """Stamp the current request's X-Request-ID on the entry, if there is one."""
    request_id = correlation_id.get(None)
    if request_id:
        event_dict["correlation_id"] = request_id
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Install the processor chain and the stdlib handler.

    Must run before the first ``get_logger`` call is bound: loggers are cached
    on first use and keep whatever chain was active then.

    Args:
        log_level: Root level name ("DEBUG", "INFO", ...)
        json_logs: JSONRenderer when True, ConsoleRenderer otherwise
    """
    pre_chain = _pre_chain()
    if json_logs:
        final = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        final = [structlog.dev.ConsoleRenderer()]

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": pre_chain,
                    "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, *final],
                },
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "formatter": "structured",
                },
            },
            "root": {"handlers": ["stdout"], "level": log_level},
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        }
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
