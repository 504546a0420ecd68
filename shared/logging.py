"""
Structured logging for the identity bridge.

Log events are JSON with service, request, user and RPC correlation fields.
Values of credential-bearing keys (tokens, signatures, key material) are
masked before rendering.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
rpc_id_var: ContextVar[Optional[str]] = ContextVar("rpc_id", default=None)

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({
    "token",
    "id_token",
    "idtoken",
    "session_token",
    "sessiontoken",
    "authorization",
    "private_key",
    "signature",
    "digest",
    "master_key_ref",
})


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog + stdlib logging for a service."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_service_context,
            add_correlation_context,
            redact_sensitive,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger(service_name).setLevel(level)


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # logger names are "<service>.<component>"
    service, _, component = event_dict.get("logger", "").partition(".")
    if component:
        event_dict.setdefault("service", service)
        event_dict.setdefault("component", component)
    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, var in (("request_id", request_id_var), ("user_id", user_id_var), ("rpc_id", rpc_id_var)):
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def redact_sensitive(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values logged under credential-bearing keys."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def bind_request_context(request_id: Optional[str] = None, rpc_id: Optional[str] = None) -> str:
    """Start a request's correlation context; returns the request id in use."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    if rpc_id:
        rpc_id_var.set(rpc_id)
    return request_id


def set_rpc_context(rpc_id: str) -> None:
    rpc_id_var.set(rpc_id)


def set_user_context(user_id: Optional[str] = None):
    """Attach the account id to subsequent log events."""
    if user_id:
        user_id_var.set(user_id)


def clear_context():
    request_id_var.set(None)
    user_id_var.set(None)
    rpc_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger; name it ``<service>.<component>``."""
    return structlog.get_logger(name)
