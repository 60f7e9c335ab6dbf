from __future__ import annotations

import threading
from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse, urlunparse

from estategate.config import Settings, get_settings, reset_settings_cache
from estategate.logging import get_logger
from estategate.security.codec import TokenCodec
from estategate.security.filters import (
    AuthenticationFilter,
    AuthorizationFilter,
    SecurityFilterPipeline,
)
from estategate.security.membership import CommunityAdminLookup
from estategate.service.accounts import AccountService
from estategate.service.authentication import LoginService
from estategate.service.mail import SmtpMailSender
from estategate.service.security_tokens import SecurityTokenManager
from estategate.storage.memory import MemoryStore
from estategate.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a DSN for safe logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.codec = TokenCodec()
        self.security_tokens = SecurityTokenManager(
            self.store,
            email_confirm_ttl=timedelta(minutes=self.settings.email_confirm_token_ttl_minutes),
            password_reset_ttl=timedelta(minutes=self.settings.password_reset_token_ttl_minutes),
        )
        self.mail = SmtpMailSender(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
            base_url=self.settings.app_base_url,
        )
        self.accounts = AccountService(self.store, self.security_tokens, self.mail)
        self.login = LoginService(
            self.store,
            self.codec,
            self.settings.token_secret,
            token_ttl=timedelta(minutes=self.settings.token_expiration_minutes),
        )
        self.security_filters = SecurityFilterPipeline(
            AuthenticationFilter(
                self.codec,
                self.settings.token_secret,
                header_name=self.settings.token_header_name,
                header_prefix=self.settings.token_header_prefix,
            ),
            AuthorizationFilter(
                CommunityAdminLookup(self.store),
                self.settings.admin_path_patterns,
                reject_status=self.settings.authorization_reject_status,
            ),
        )
        logger.info(
            "runtime_initialized",
            store_type=store_type,
            email_configured=self.mail.is_configured,
            admin_path_patterns=len(self.settings.admin_path_patterns),
        )

    def close(self) -> None:
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        if runtime is not None:
            runtime.close()
        runtime = Runtime(settings)
        return runtime


__all__ = ["Runtime", "get_runtime", "reset_runtime_for_tests"]
