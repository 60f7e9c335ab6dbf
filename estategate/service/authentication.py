from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from estategate.logging import get_logger
from estategate.security.codec import BearerClaim, Secret, TokenCodec
from estategate.service.errors import CredentialsIncorrectError, UserNotFoundError
from estategate.service.passwords import verify_password
from estategate.storage.models import User

logger = get_logger(__name__)


class LoginUserStore(Protocol):
    def get_user_by_email(self, email: str) -> Optional[User]: ...


@dataclass(frozen=True)
class AuthenticationData:
    token: str
    user_id: str
    expires_at: datetime


class LoginService:
    """Exchange email and password for a signed bearer credential."""

    def __init__(
        self,
        store: LoginUserStore,
        codec: TokenCodec,
        secret: Secret,
        *,
        token_ttl: timedelta,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.codec = codec
        self.secret = secret
        self.token_ttl = token_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def login(self, email: str, password: str) -> AuthenticationData:
        user = self.store.get_user_by_email(email)
        if not user:
            logger.info("login_unknown_email")
            raise UserNotFoundError()
        if not verify_password(user.password_hash, password):
            logger.info("login_credentials_incorrect", user_id=user.id)
            raise CredentialsIncorrectError()
        claim = BearerClaim(identity=user.id, expires_at=self._clock() + self.token_ttl)
        token = self.codec.encode(claim, self.secret)
        logger.info("login_succeeded", user_id=user.id)
        return AuthenticationData(token=token, user_id=user.id, expires_at=claim.expires_at)


__all__ = ["AuthenticationData", "LoginService"]
