"""
Structured logging setup for the fortune engagement service.
Provides JSON-formatted logs with consistent fields for job tracing.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_process_mode,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def bind_process_mode(mode: str) -> None:
    """Attach the process mode (api / worker / reap ...) to every log line."""
    structlog.contextvars.bind_contextvars(process_mode=mode)


def _add_process_mode(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", "fortune-engagement")
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_job_event(queue: str, job_id: str, outcome: str, duration_ms: float, error: str = None):
    """Log a job outcome with consistent fields."""
    logger = get_logger("jobs")

    log_data = {
        "queue": queue,
        "job_id": job_id,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 2),
    }

    if error:
        log_data["error"] = error

    if outcome == "completed":
        logger.info("Job finished", **log_data)
    else:
        logger.warning("Job finished with error", **log_data)
