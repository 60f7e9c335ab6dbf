from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from estategate.logging import get_logger

logger = get_logger(__name__)

_pwd_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    """Return an argon2id hash of ``password``."""
    return _pwd_hasher.hash(password)


def verify_password(stored_hash: Optional[str], password: str) -> bool:
    if not stored_hash:
        return False
    try:
        return _pwd_hasher.verify(stored_hash, password)
    except (InvalidHash, VerificationError):
        return False


__all__ = ["hash_password", "verify_password"]
