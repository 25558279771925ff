from .structured_logger import (
    StructuredFormatter,
    ContextualLogger,
    setup_logging,
    log_performance,
    get_logger,
)

__all__ = [
    "StructuredFormatter",
    "ContextualLogger",
    "setup_logging",
    "log_performance",
    "get_logger",
]
