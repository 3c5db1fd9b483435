"""
Structured logging for the scoped ACL engine.

Log events carry the request being served and, while a decision is being
made, the user and scope under authorization.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

import structlog

try:
    from opentelemetry import trace
    HAS_OPENTELEMETRY = True
except ImportError:
    HAS_OPENTELEMETRY = False

EventDict = Dict[str, Any]

request_id_var: ContextVar[Optional[str]] = ContextVar("acl_request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("acl_user_id", default=None)
scope_key_var: ContextVar[Optional[str]] = ContextVar("acl_scope_key", default=None)


def configure_logging(service_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Route structlog through the stdlib root logger.

    ``json_logs=False`` renders human readable lines for local runs.
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            tag_service(service_name),
            add_trace_context,
            add_acl_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def tag_service(service_name: str) -> Callable[[Any, str, EventDict], EventDict]:
    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict
    return processor


def add_trace_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the current OpenTelemetry trace id, when tracing is installed."""
    if HAS_OPENTELEMETRY:
        span_context = trace.get_current_span().get_span_context()
        if span_context.trace_id:
            event_dict["trace_id"] = f"{span_context.trace_id:032x}"
    return event_dict


def add_acl_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add request id, user id and scope key from the current context."""
    for key, var in (("request_id", request_id_var), ("user_id", user_id_var), ("scope_key", scope_key_var)):
        value = var.get()
        if value:
            event_dict[key] = value
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Use the caller's request id, or generate one."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_acl_context(user_id: Optional[Any] = None, scope_key: Optional[str] = None):
    """Set the user and scope being authorized."""
    if user_id is not None:
        user_id_var.set(str(user_id))
    if scope_key is not None:
        scope_key_var.set(scope_key)


def clear_acl_context():
    user_id_var.set(None)
    scope_key_var.set(None)


def clear_context():
    """Forget the request id as well as the ACL context."""
    request_id_var.set(None)
    clear_acl_context()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
