# Observability package
from .logging import (
    LoggerAdapter,
    bind_request_context,
    clear_request_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "bind_request_context",
    "clear_request_context",
    "LoggerAdapter",
]
