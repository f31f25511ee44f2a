"""Structured logging configuration with request correlation and credential redaction."""

import logging
import re
import sys
from contextvars import ContextVar
from typing import Any, Optional
from uuid import uuid4

import orjson
import structlog
from structlog.processors import CallsiteParameter

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
task_type_var: ContextVar[str] = ContextVar("task_type", default="")


class CredentialRedactor:
    """Redact credentials from log values."""

    BEARER_PATTERN = re.compile(r"\bBearer\s+[\w.\-]{8,}", re.IGNORECASE)
    API_KEY_PATTERN = re.compile(r"\b(sk-|api[_-]?key[\s=:]+)[\w.\-]{16,}\b", re.IGNORECASE)

    @classmethod
    def redact(cls, value: Any) -> Any:
        """Redact credentials from value."""
        if not isinstance(value, str):
            return value

        value = cls.BEARER_PATTERN.sub("Bearer [REDACTED]", value)
        value = cls.API_KEY_PATTERN.sub("[API_KEY_REDACTED]", value)
        return value


def add_context_vars(logger, method_name, event_dict):
    """Add context variables to log events."""
    if request_id := request_id_var.get():
        event_dict["request_id"] = request_id
    if task_type := task_type_var.get():
        event_dict["task_type"] = task_type
    return event_dict


def redact_credentials(logger, method_name, event_dict):
    """Redact credentials from every string value."""
    for key, value in event_dict.items():
        if key in ("timestamp", "level", "logger", "request_id"):
            continue
        if isinstance(value, str):
            event_dict[key] = CredentialRedactor.redact(value)
        elif isinstance(value, dict):
            event_dict[key] = {k: CredentialRedactor.redact(v) for k, v in value.items()}
    return event_dict


def _orjson_dumps(obj, **kwargs) -> str:
    return orjson.dumps(obj, default=kwargs.get("default")).decode()


def setup_logging(level: str = "INFO", format: str = "json") -> None:
    """Configure structlog and route standard library records through the same renderer."""
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_context_vars,
        structlog.stdlib.ExtraAdder(),
        redact_credentials,
    ]

    if format == "json":
        renderer = structlog.processors.JSONRenderer(serializer=_orjson_dumps)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    CallsiteParameter.FILENAME,
                    CallsiteParameter.FUNC_NAME,
                    CallsiteParameter.LINENO,
                ]
            ),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.ExceptionRenderer(),
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """Context manager for adding temporary logging context."""

    def __init__(self, logger: structlog.stdlib.BoundLogger, **kwargs):
        self.logger = logger
        self.context = kwargs
        self.bound_logger = None

    def __enter__(self):
        self.bound_logger = self.logger.bind(**self.context)
        return self.bound_logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.bound_logger.error(
                "Exception in context",
                exc_type=exc_type.__name__,
                exc_val=str(exc_val),
            )
        return False


class RequestContext:
    """Context manager for request-scoped logging."""

    def __init__(self, request_id: Optional[str] = None, task_type: Optional[str] = None):
        self.request_id = request_id or str(uuid4())
        self.task_type = task_type
        self._tokens = []

    def __enter__(self):
        self._tokens.append((request_id_var, request_id_var.set(self.request_id)))
        if self.task_type:
            self._tokens.append((task_type_var, task_type_var.set(self.task_type)))
        return self

    def set_task_type(self, task_type: str) -> None:
        self._tokens.append((task_type_var, task_type_var.set(task_type)))

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
        return False
