from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SecurityTokenType(str, Enum):
    """Purpose of an out-of-band security token."""

    EMAIL_CONFIRM = "EMAIL_CONFIRM"
    PASSWORD_RESET = "PASSWORD_RESET"


@dataclass
class User:
    id: str
    email: str
    name: Optional[str] = None
    password_hash: Optional[str] = None
    email_confirmed: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class SecurityToken:
    id: str
    token_type: SecurityTokenType
    value: str
    created_at: datetime
    expires_at: datetime
    owner_id: str
    used: bool = False

    @classmethod
    def new(
        cls,
        token_type: SecurityTokenType,
        value: str,
        owner_id: str,
        ttl: timedelta,
        *,
        now: Optional[datetime] = None,
    ) -> "SecurityToken":
        if ttl <= timedelta(0):
            raise ValueError("security token ttl must be positive")
        created = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            token_type=SecurityTokenType(token_type),
            value=value,
            created_at=created,
            expires_at=created + ttl,
            owner_id=owner_id,
            used=False,
        )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class Community:
    id: str
    name: str
    district: Optional[str] = None
    admin_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
