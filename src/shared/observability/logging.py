# Structured logging with request context
# Every retrieval request binds a correlation id and tenant; the processor
# below stamps both onto fusion, rerank, guardrail and stream events.

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)
tenant_id_ctx: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("httpx", "httpcore")


def get_correlation_id() -> str:
    """Correlation id of the current request, created on first use"""
    corr_id = correlation_id_ctx.get()
    if corr_id is None:
        corr_id = str(uuid.uuid4())
        correlation_id_ctx.set(corr_id)
    return corr_id


def set_correlation_id(corr_id: str) -> None:
    correlation_id_ctx.set(corr_id)


def bind_request_context(
    request_id: Optional[str] = None, tenant_id: Optional[str] = None
) -> str:
    """
    Bind request-scoped identifiers for every log line emitted by this task.

    Returns:
        The correlation id in force; ``request_id`` when given
    """
    corr_id = request_id or str(uuid.uuid4())
    correlation_id_ctx.set(corr_id)
    tenant_id_ctx.set(tenant_id)
    return corr_id


def clear_request_context() -> None:
    correlation_id_ctx.set(None)
    tenant_id_ctx.set(None)


def add_request_context(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor: stamp correlation id and tenant onto the event"""
    corr_id = correlation_id_ctx.get()
    if corr_id and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = corr_id
    tenant_id = tenant_id_ctx.get()
    if tenant_id and "tenant_id" not in event_dict:
        event_dict["tenant_id"] = tenant_id
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure stdlib logging and structlog for the retrieval core.

    Args:
        log_level: Logging level name, case-insensitive
        json_output: Render JSON lines; otherwise the console renderer
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_request_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


class LoggerAdapter:
    """Logger carrying fixed fields, e.g. the query id of a stream"""

    def __init__(self, logger: structlog.BoundLogger, **default_fields: Any):
        self.logger = logger
        self.default_fields = default_fields

    def _log(self, level: str, event: str, **kwargs: Any) -> None:
        getattr(self.logger, level)(event, **{**self.default_fields, **kwargs})

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log("debug", event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log("info", event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log("warning", event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._log("error", event, **kwargs)

    def bind(self, **new_fields: Any) -> "LoggerAdapter":
        return LoggerAdapter(self.logger, **{**self.default_fields, **new_fields})
