"""Structured logging for the chat backend.

Every line, whether it comes from structlog or a stdlib logger such as
uvicorn or asyncpg, passes through the same redaction chain before it is
rendered. Credentials are scrubbed two ways: by field name (``password``,
``refresh_token``, ``authorization``) and by value, so a JWT or bearer
credential that ends up inside an error string is masked too.
"""

import logging
import re
import sys
from typing import Any, Dict, List, Optional

import structlog

REDACTED = "REDACTED"

# Substrings of field names whose values are never logged
SENSITIVE_KEYS = (
    "api_key",
    "authorization",
    "cookie",
    "secret",
    "password",
    "token",
)

# Field names that contain a sensitive substring but only describe a credential
SAFE_KEYS = frozenset({"token_type", "token_kind"})

_JWT = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]*")
_BEARER = re.compile(r"(?i)\bbearer\s+\S+")
# One-time tokens travel as the last segment of emailed links
_LINK_TOKEN = re.compile(r"(/(?:verify-email|reset-password)/)[^/?#\s]+")

# Loggers that duplicate request_completed or chatter at INFO
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "asyncpg": logging.WARNING,
    "aiosmtplib": logging.WARNING,
}


def is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in SAFE_KEYS:
        return False
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)


def scrub_text(text: str) -> str:
    """Mask JWTs, bearer credentials and emailed link tokens in free text."""
    text = _BEARER.sub(f"Bearer {REDACTED}", text)
    text = _LINK_TOKEN.sub(rf"\1{REDACTED}", text)
    return _JWT.sub(REDACTED, text)


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return scrub_text(value)
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and is_sensitive_key(k) else _redact_value(v)
            for k, v in value.items()
        }
    if type(value) in (list, tuple):
        return type(value)(_redact_value(v) for v in value)
    return value


def redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Redact credentials from a log entry.

    Fields named like a credential (see SENSITIVE_KEYS) are replaced
    outright, except the descriptive names in SAFE_KEYS. Every other string
    is scanned for JWTs and ``Bearer`` credentials, recursing into dicts and
    lists so header mappings are covered.
    """
    for key in list(event_dict.keys()):
        if is_sensitive_key(key):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact_value(event_dict[key])

    return event_dict


def shared_processors() -> List[Any]:
    """Processors applied to structlog and stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive,
    ]


def _route_stdlib_logging(level: int, renderer: Any) -> None:
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.add_logger_name, *shared_processors()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))
    # uvicorn installs its own handlers; hand its records to the root handler
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines when True, colored console lines otherwise
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    _route_stdlib_logging(level, renderer)

    structlog.configure(
        processors=[
            *shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(correlation_id: str, **context: Any) -> None:
    """Start a fresh log context for one HTTP request or socket session."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id, **context)


def get_logger(name: Optional[str] = None, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally named and pre-bound with context."""
    logger = structlog.get_logger()
    if name:
        context["logger"] = name
    return logger.bind(**context) if context else logger
