from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Keys whose values are credentials: never logged, not even partially
_CREDENTIAL_KEYS = frozenset({"password", "secret", "token", "value", "authorization"})
_CREDENTIAL_SUFFIXES = ("_password", "_secret", "_token")
_EMAIL_KEYS = frozenset({"email", "to"})


def get_correlation_id() -> Optional[str]:
    return _request_id.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Use the caller's request id, or mint one, for the current context."""
    cid = correlation_id or str(uuid.uuid4())
    _request_id.set(cid)
    return cid


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _mask_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask bearer credentials, security token values and email addresses.

    Identifiers such as ``token_id`` or ``token_type`` pass through; only the
    exact credential keys and ``*_token``/``*_secret``/``*_password`` are
    masked.
    """
    for key, raw in list(event_dict.items()):
        if not isinstance(raw, str):
            continue
        lower_key = key.lower()
        if lower_key in _CREDENTIAL_KEYS or lower_key.endswith(_CREDENTIAL_SUFFIXES):
            scheme, _, rest = raw.partition(" ")
            if lower_key == "authorization" and rest:
                event_dict[key] = f"{scheme} ***"
            else:
                event_dict[key] = "***"
        elif lower_key in _EMAIL_KEYS or lower_key.endswith("_email"):
            event_dict[key] = redact_email(raw)
    return event_dict


def configure_logging(
    level: str = "INFO",
    *,
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """(Re)configure structlog for the process.

    JSON lines in production; colored console output when ``development_mode``
    is set or ``json_output`` is off.
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _mask_credentials,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.extend(
            [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def bind_request(method: str, path: str) -> None:
    """Attach the request line to every log entry emitted while serving it."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(method=method, path=path)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
