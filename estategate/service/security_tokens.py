from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from estategate.logging import get_logger
from estategate.service.errors import (
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
)
from estategate.storage.models import SecurityToken, SecurityTokenType, User

logger = get_logger(__name__)

# 256 bits of entropy, URL-safe so it can be mailed inside a link
TOKEN_VALUE_BYTES = 32


class SecurityTokenStore(Protocol):
    def save_token(self, token: SecurityToken) -> SecurityToken: ...

    def find_token_by_value(self, value: str) -> Optional[SecurityToken]: ...

    def mark_token_used(self, token_id: str) -> Optional[SecurityToken]: ...

    def delete_unused_tokens(self, user_id: str, token_type: SecurityTokenType) -> int: ...


class SecurityTokenManager:
    """Issue and consume single-use tokens for out-of-band account flows.

    Consumption is check-then-set: expiry is checked here, the ``used`` flip
    is delegated to the store's atomic conditional update so two concurrent
    consumers of the same token can never both succeed.
    """

    def __init__(
        self,
        store: SecurityTokenStore,
        *,
        email_confirm_ttl: timedelta,
        password_reset_ttl: timedelta,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.email_confirm_ttl = email_confirm_ttl
        self.password_reset_ttl = password_reset_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    def _create(
        self, token_type: SecurityTokenType, ttl: timedelta, owner: User
    ) -> SecurityToken:
        token = SecurityToken.new(
            token_type,
            secrets.token_urlsafe(TOKEN_VALUE_BYTES),
            owner.id,
            ttl,
            now=self._now(),
        )
        saved = self.store.save_token(token)
        logger.info(
            "security_token_created",
            token_id=saved.id,
            token_type=saved.token_type.value,
            owner_id=owner.id,
            expires_at=saved.expires_at.isoformat(),
        )
        return saved

    def create_email_confirm_token(self, owner: User) -> SecurityToken:
        return self._create(
            SecurityTokenType.EMAIL_CONFIRM, self.email_confirm_ttl, owner
        )

    def create_password_reset_token(self, owner: User) -> SecurityToken:
        return self._create(
            SecurityTokenType.PASSWORD_RESET, self.password_reset_ttl, owner
        )

    def use_token(self, token: SecurityToken) -> SecurityToken:
        """Consume ``token`` exactly once.

        Raises:
            TokenExpiredError: ``now > expires_at``, whatever the used state.
            TokenAlreadyUsedError: the token was already consumed, including
                by a concurrent caller that won the race.
        """
        if token.is_expired(self._now()):
            logger.warning(
                "security_token_expired",
                token_id=token.id,
                token_type=token.token_type.value,
            )
            raise TokenExpiredError("security token expired")
        if token.used:
            raise TokenAlreadyUsedError()
        updated = self.store.mark_token_used(token.id)
        if updated is None:
            logger.warning(
                "security_token_reuse_rejected",
                token_id=token.id,
                token_type=token.token_type.value,
            )
            raise TokenAlreadyUsedError()
        token.used = True
        logger.info(
            "security_token_used",
            token_id=updated.id,
            token_type=updated.token_type.value,
            owner_id=updated.owner_id,
        )
        return updated

    def find_token(
        self,
        value: str,
        *,
        owner_id: str,
        token_type: SecurityTokenType,
    ) -> SecurityToken:
        """Resolve a presented token value belonging to ``owner_id``.

        Unknown values, tokens owned by another user and tokens of another
        type are all reported as not found.
        """
        token = self.store.find_token_by_value(value) if value else None
        if token is None or token.owner_id != owner_id or token.token_type != token_type:
            raise TokenNotFoundError()
        return token

    def discard_unused_tokens(self, owner: User, token_type: SecurityTokenType) -> int:
        removed = self.store.delete_unused_tokens(owner.id, token_type)
        if removed:
            logger.info(
                "security_tokens_discarded",
                owner_id=owner.id,
                token_type=SecurityTokenType(token_type).value,
                count=removed,
            )
        return removed


__all__ = ["SecurityTokenManager", "SecurityTokenStore", "TOKEN_VALUE_BYTES"]
