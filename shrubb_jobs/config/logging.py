import logging
import sys
from typing import Any

import structlog

from .settings import Settings, settings as default_settings

# Provider SDKs log every outbound request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def _renderer(debug: bool):
    # JSON for log shipping, pretty printing for local runs
    if debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog for the ops API or a worker process."""
    settings = settings or default_settings
    level = getattr(logging, settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    callsite = (
        [structlog.processors.CallsiteParameter.FUNC_NAME] if settings.debug else []
    )

    structlog.configure(
        processors=[
            # Request ids, or worker and job ids bound per claim
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.CallsiteParameterAdder(parameters=callsite),
            _renderer(settings.debug),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Replace the bound context with the current request's."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def bind_job_context(**context: Any) -> None:
    """Bind job identifiers to every log line emitted while the job runs."""
    structlog.contextvars.bind_contextvars(**context)


def clear_job_context(*keys: str) -> None:
    """Drop job identifiers once the job has been resolved."""
    structlog.contextvars.unbind_contextvars(*keys)
