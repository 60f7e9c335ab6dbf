from __future__ import annotations

import json
import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from estategate.logging import get_logger
from estategate.security.codec import TokenCodec

logger = get_logger(__name__)

UUID_PATTERN = (
    "[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)

# Endpoints that mutate community state and require a community admin.
DEFAULT_ADMIN_PATH_PATTERNS = [
    f"/communities/(?P<tenant_id>{UUID_PATTERN})/admins",
    f"/communities/(?P<tenant_id>{UUID_PATTERN})/amenities",
]


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the authentication and authorization core."""

    database_url: str = env_field(
        "postgresql://localhost:5432/estategate", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(False, "TEST_MODE")

    # Bearer credential
    token_header_name: str = env_field("Authorization", "TOKEN_HEADER_NAME")
    token_header_prefix: str = env_field("Bearer ", "TOKEN_HEADER_PREFIX")
    token_secret: str = env_field(
        None,
        "TOKEN_SECRET",
        description="HMAC-SHA-512 signing secret; must be at least 64 bytes",
        validate_default=True,
    )
    token_expiration_minutes: int = env_field(
        60 * 24,
        "TOKEN_EXPIRATION_MINUTES",
        description="Lifetime of bearer credentials issued at login",
    )

    # Out-of-band security tokens
    email_confirm_token_ttl_minutes: int = env_field(
        60 * 24 * 7, "EMAIL_CONFIRM_TOKEN_TTL_MINUTES"
    )
    password_reset_token_ttl_minutes: int = env_field(
        60 * 24, "PASSWORD_RESET_TOKEN_TTL_MINUTES"
    )

    # Community admin authorization
    admin_path_patterns: list[str] = env_field(
        DEFAULT_ADMIN_PATH_PATTERNS,
        "ADMIN_PATH_PATTERNS",
        description="Regexes with a tenant_id group; JSON list or comma-separated",
    )
    authorization_reject_status: int = env_field(403, "AUTHORIZATION_REJECT_STATUS")

    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("MyHome", "EMAIL_FROM_NAME")
    app_base_url: str = env_field("http://localhost:8080", "APP_BASE_URL")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("admin_path_patterns", mode="before")
    @classmethod
    def _split_patterns(cls, value: Any) -> Any:
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [part.strip() for part in raw.split(",") if part.strip()]
        return value

    @field_validator("authorization_reject_status")
    @classmethod
    def _validate_reject_status(cls, value: int) -> int:
        if value not in (401, 403):
            raise ValueError("authorization_reject_status must be 401 or 403")
        return value

    @field_validator("token_secret", mode="before")
    @classmethod
    def _ensure_token_secret(cls, value: str | None) -> str:
        if value:
            if len(value.encode("utf-8")) < TokenCodec.min_key_bytes:
                raise ValueError(
                    f"token_secret must be at least {TokenCodec.min_key_bytes} bytes"
                )
            return value
        # Credentials signed with a generated secret do not survive a restart
        logger.warning(
            "token_secret_generated",
            message="TOKEN_SECRET not set; issued credentials are process-local",
        )
        return secrets.token_urlsafe(64)


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
