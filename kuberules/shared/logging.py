"""
Shared logging configuration for kuberules.
"""

import sys
import structlog
import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, TextIO
from contextvars import ContextVar

# Context variables for the active rule scope
namespace_var: ContextVar[Optional[str]] = ContextVar('namespace', default=None)
labels_var: ContextVar[Optional[Dict[str, str]]] = ContextVar('labels', default=None)


def configure_logging(service_name: str, log_level: str = "info", log_format: str = "json",
                      stream: TextIO = sys.stdout) -> None:
    """Configure structured logging for a process embedding kuberules."""

    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context(service_name),
            add_scope_context,
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=getattr(logging, log_level.upper()),
    )


def add_service_context(service_name: str):
    """Build a processor stamping the service name on log events."""

    def processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def add_scope_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the active namespace and label set to log events."""
    namespace = namespace_var.get()
    if namespace:
        event_dict.setdefault("namespace", namespace)

    labels = labels_var.get()
    if labels:
        event_dict.setdefault("labels", labels)

    return event_dict


def set_scope_context(namespace: Optional[str], labels: Optional[Dict[str, str]] = None) -> None:
    """Set scope context in logging."""
    namespace_var.set(namespace)
    labels_var.set(dict(labels) if labels else None)


def clear_context():
    """Clear all context variables."""
    namespace_var.set(None)
    labels_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


@contextmanager
def log_duration(logger: structlog.BoundLogger, name: str, **fields: Any) -> Iterator[None]:
    """Log how long the wrapped block took."""
    start_time = time.time()
    try:
        yield
    finally:
        logger.info(
            f"finished {name}",
            elapsed_ms=round((time.time() - start_time) * 1000, 2),
            **fields
        )
