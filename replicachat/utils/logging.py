"""Structured logging for ReplicaChat: NEVER logs secrets."""

import re
import sys
from typing import Any

import structlog

from replicachat.constants import PROJECT_NAME, SENSITIVE_PATTERNS

_COMPILED = [re.compile(p) for p in SENSITIVE_PATTERNS]
_literal_secrets: set[str] = set()

REDACTED = "[REDACTED]"


def register_secret(value: str) -> None:
    """Redact a literal value (the organization secret) wherever it appears."""
    if value:
        _literal_secrets.add(value)


def redact(value: Any) -> Any:
    """Redact strings, recursing into the dicts and lists upstream bodies carry."""
    if isinstance(value, str):
        for secret in _literal_secrets:
            value = value.replace(secret, REDACTED)
        for pattern in _COMPILED:
            value = pattern.sub(REDACTED, value)
        return value
    if isinstance(value, dict):
        return {k: redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


def _redaction_processor(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    return {key: redact(value) for key, value in event_dict.items()}


def _tag_service(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", PROJECT_NAME)
    return event_dict


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    redact_secrets: bool = True,
) -> None:
    """
    Configure structlog for the gateway and the CLI.

    JSON lines on stderr by default; the CLI asks for console rendering.
    Request-scoped fields (request id, method, path) arrive through
    contextvars bound by the request middleware.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _tag_service,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if redact_secrets:
        # After format_exc_info so tracebacks are scrubbed too.
        processors.append(_redaction_processor)

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level_to_int(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str = "") -> structlog.BoundLogger:
    """Module logger tagged with its component name."""
    logger = structlog.get_logger()
    return logger.bind(component=name) if name else logger


_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


def _level_to_int(level: str) -> int:
    return _LEVELS.get(level.upper(), 20)
