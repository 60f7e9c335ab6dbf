from __future__ import annotations

from typing import Optional, Protocol

from estategate.logging import get_logger
from estategate.service.errors import (
    ConflictError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
)
from estategate.service.mail import MailSender
from estategate.service.passwords import hash_password
from estategate.service.security_tokens import SecurityTokenManager
from estategate.storage.errors import DuplicateRecord
from estategate.storage.models import SecurityTokenType, User

logger = get_logger(__name__)


class AccountUserStore(Protocol):
    def create_user(
        self,
        email: str,
        *,
        name: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def save_password(self, user_id: str, password_hash: str) -> None: ...

    def mark_email_confirmed(self, user_id: str) -> Optional[User]: ...


class AccountService:
    """Registration, email confirmation and password reset workflows.

    Every workflow that consumes a security token reports a missing, expired
    or already-used token as ``False``; nothing is retried.
    """

    def __init__(
        self,
        store: AccountUserStore,
        tokens: SecurityTokenManager,
        mail: MailSender,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.mail = mail

    def register(self, email: str, password: str, *, name: Optional[str] = None) -> User:
        try:
            user = self.store.create_user(
                email, name=name, password_hash=hash_password(password)
            )
        except DuplicateRecord as exc:
            raise ConflictError("user already exists", detail=exc.detail) from exc
        token = self.tokens.create_email_confirm_token(user)
        if not self.mail.send_account_created(user, token):
            logger.warning("account_created_mail_failed", user_id=user.id)
        logger.info("user_registered", user_id=user.id)
        return user

    def _consume(
        self, user: User, value: str, token_type: SecurityTokenType
    ) -> bool:
        try:
            token = self.tokens.find_token(value, owner_id=user.id, token_type=token_type)
            self.tokens.use_token(token)
        except (TokenNotFoundError, TokenExpiredError, TokenAlreadyUsedError) as exc:
            logger.info(
                "security_token_rejected",
                user_id=user.id,
                token_type=token_type.value,
                reason=type(exc).__name__,
            )
            return False
        return True

    def confirm_email(self, user_id: str, value: str) -> bool:
        user = self.store.get_user(user_id)
        if not user or user.email_confirmed:
            return False
        if not self._consume(user, value, SecurityTokenType.EMAIL_CONFIRM):
            return False
        confirmed = self.store.mark_email_confirmed(user.id)
        if not confirmed:
            return False
        self.mail.send_account_confirmed(confirmed)
        logger.info("email_confirmed", user_id=user.id)
        return True

    def resend_email_confirm(self, user_id: str) -> bool:
        user = self.store.get_user(user_id)
        if not user or user.email_confirmed:
            return False
        self.tokens.discard_unused_tokens(user, SecurityTokenType.EMAIL_CONFIRM)
        token = self.tokens.create_email_confirm_token(user)
        return self.mail.send_account_created(user, token)

    def request_password_reset(self, email: str) -> bool:
        user = self.store.get_user_by_email(email)
        if not user:
            logger.info("password_reset_unknown_email")
            return False
        token = self.tokens.create_password_reset_token(user)
        logger.info("password_reset_requested", user_id=user.id)
        return self.mail.send_password_recover_code(user, token)

    def reset_password(self, email: str, value: str, new_password: str) -> bool:
        user = self.store.get_user_by_email(email)
        if not user:
            return False
        if not self._consume(user, value, SecurityTokenType.PASSWORD_RESET):
            return False
        self.store.save_password(user.id, hash_password(new_password))
        if not self.mail.send_password_changed(user):
            logger.warning("password_changed_mail_failed", user_id=user.id)
        logger.info("password_reset_completed", user_id=user.id)
        return True


__all__ = ["AccountService", "AccountUserStore"]
