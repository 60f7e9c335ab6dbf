from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from estategate.logging import get_logger
from estategate.service.errors import (
    MalformedTokenError,
    SignatureInvalidError,
    TokenExpiredError,
    WeakKeyError,
)

logger = get_logger(__name__)

Secret = Union[bytes, str]


@dataclass(frozen=True)
class BearerClaim:
    """Identity and expiry carried by a bearer credential.

    Naive ``expires_at`` values are taken to be UTC; the stored value is
    always timezone-aware UTC.
    """

    identity: str
    expires_at: datetime

    def __post_init__(self) -> None:
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "expires_at", expires_at.astimezone(timezone.utc))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Encode and verify compact HS512 JWS bearer credentials.

    The token is ``base64url(header).base64url(payload).base64url(mac)`` with
    ``sub`` holding the identity and ``exp`` the expiry as a NumericDate.
    Verification checks the MAC over everything before the last ``.`` before
    any segment is parsed, so any altered byte surfaces as a signature
    failure rather than a parse failure.
    """

    algorithm = "HS512"
    # HMAC-SHA-512 key size in bytes
    min_key_bytes = 64

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utcnow

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _key(self, secret: Secret) -> bytes:
        key = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
        if len(key) < self.min_key_bytes:
            raise WeakKeyError(
                f"{self.algorithm} requires a secret of at least {self.min_key_bytes} bytes",
                detail={"key_bytes": len(key)},
            )
        return key

    def _sign(self, signing_input: str, key: bytes) -> str:
        mac = hmac.new(key, signing_input.encode("utf-8"), hashlib.sha512).digest()
        return self._encode_segment(mac)

    @staticmethod
    def _numeric_date(value: datetime) -> Union[int, float]:
        ts = value.timestamp()
        return int(ts) if value.microsecond == 0 else ts

    def encode(self, claim: BearerClaim, secret: Secret) -> str:
        key = self._key(secret)
        header = {"alg": self.algorithm, "typ": "JWT"}
        payload = {"sub": claim.identity, "exp": self._numeric_date(claim.expires_at)}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, key)}"

    def decode(self, token: str, secret: Secret) -> BearerClaim:
        key = self._key(secret)
        signing_input, sep, signature = token.rpartition(".")
        if not sep or not signing_input:
            raise MalformedTokenError("token is not a compact JWS")

        expected = self._sign(signing_input, key)
        if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
            raise SignatureInvalidError()

        segments = signing_input.split(".")
        if len(segments) != 2:
            raise MalformedTokenError("token must have three segments")
        header = self._parse_segment(segments[0])
        if header.get("alg") != self.algorithm:
            raise MalformedTokenError("unsupported token algorithm")
        payload = self._parse_segment(segments[1])

        identity = payload.get("sub")
        if not isinstance(identity, str) or not identity:
            raise MalformedTokenError("token has no subject")
        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise MalformedTokenError("token has no expiry")
        try:
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise MalformedTokenError("token expiry out of range")

        if self._clock() > expires_at:
            raise TokenExpiredError()
        return BearerClaim(identity=identity, expires_at=expires_at)

    def _parse_segment(self, segment: str) -> dict[str, Any]:
        try:
            parsed = json.loads(self._decode_segment(segment))
        except (binascii.Error, ValueError) as exc:
            logger.debug("bearer_segment_unparseable", error=str(exc))
            raise MalformedTokenError("token segment is not base64url JSON")
        if not isinstance(parsed, dict):
            raise MalformedTokenError("token segment is not a JSON object")
        return parsed


__all__ = ["BearerClaim", "TokenCodec"]
