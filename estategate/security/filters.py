from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Mapping, Optional, Pattern, Protocol

from estategate.logging import get_logger
from estategate.security.codec import Secret, TokenCodec
from estategate.service.errors import AuthenticationError, CredentialError, ForbiddenError

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request the security filters look at."""

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    identity: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        value = self.headers.get(name)
        if value is not None:
            return value
        lowered = name.lower()
        for key, candidate in self.headers.items():
            if key.lower() == lowered:
                return candidate
        return None

    def with_identity(self, identity: Optional[str]) -> "RequestContext":
        return replace(self, identity=identity)


@dataclass(frozen=True)
class Rejection:
    status_code: int
    error_code: str
    message: str


@dataclass(frozen=True)
class FilterOutcome:
    context: RequestContext
    rejection: Optional[Rejection] = None

    @property
    def allowed(self) -> bool:
        return self.rejection is None


class AuthenticationFilter:
    """Attach the bearer identity to a request when one verifies.

    Never rejects: a missing header, a foreign prefix and every decode
    failure all leave the request anonymous for the authorization stage to
    judge.
    """

    def __init__(
        self,
        codec: TokenCodec,
        secret: Secret,
        *,
        header_name: str = "Authorization",
        header_prefix: str = "Bearer ",
    ) -> None:
        self.codec = codec
        self.secret = secret
        self.header_name = header_name
        self.header_prefix = header_prefix

    def __call__(self, ctx: RequestContext) -> RequestContext:
        header = ctx.header(self.header_name)
        if header is None or not header.startswith(self.header_prefix):
            return ctx.with_identity(None)
        token = header[len(self.header_prefix):].strip()
        try:
            claim = self.codec.decode(token, self.secret)
        except CredentialError as exc:
            # Failure kind only; which check failed is never sent to the client
            logger.info(
                "bearer_decode_failed",
                path=ctx.path,
                reason=type(exc).__name__,
            )
            return ctx.with_identity(None)
        if not claim.identity:
            return ctx.with_identity(None)
        return ctx.with_identity(claim.identity)


class TenantMembershipLookup(Protocol):
    def is_admin_of_tenant(self, tenant_id: str, identity: str) -> bool: ...


class AuthorizationFilter:
    """Restrict community-admin endpoints to admins of that community.

    Each pattern must define a ``tenant_id`` group. Patterns are searched,
    not anchored, so prefixed mounts (``/api/communities/...``) match too.
    """

    def __init__(
        self,
        lookup: TenantMembershipLookup,
        patterns: Iterable[str],
        *,
        reject_status: int = 403,
    ) -> None:
        self.lookup = lookup
        self.patterns: List[Pattern[str]] = []
        for raw in patterns:
            compiled = re.compile(raw)
            if "tenant_id" not in compiled.groupindex:
                raise ValueError(f"admin path pattern lacks a tenant_id group: {raw}")
            self.patterns.append(compiled)
        self.reject_status = reject_status

    def match_tenant(self, path: str) -> Optional[str]:
        for pattern in self.patterns:
            match = pattern.search(path)
            if match:
                return match.group("tenant_id")
        return None

    def _reject(self, ctx: RequestContext, tenant_id: str, reason: str) -> Rejection:
        logger.warning(
            "community_admin_denied",
            path=ctx.path,
            method=ctx.method,
            tenant_id=tenant_id,
            user_id=ctx.identity,
            reason=reason,
        )
        error = AuthenticationError if self.reject_status == 401 else ForbiddenError
        return Rejection(
            status_code=error.status_code,
            error_code=error.error_code,
            message="community admin access required",
        )

    def __call__(self, ctx: RequestContext) -> Optional[Rejection]:
        tenant_id = self.match_tenant(ctx.path)
        if tenant_id is None:
            return None
        if not ctx.identity:
            return self._reject(ctx, tenant_id, "anonymous")
        try:
            is_admin = self.lookup.is_admin_of_tenant(tenant_id, ctx.identity)
        except Exception as exc:
            # Unknown tenant or a failing lookup denies the request
            logger.warning(
                "community_admin_lookup_failed",
                tenant_id=tenant_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return self._reject(ctx, tenant_id, "lookup_failed")
        if is_admin is not True:
            return self._reject(ctx, tenant_id, "not_admin")
        return None


class SecurityFilterPipeline:
    """Authentication then authorization, as one ordered request transform."""

    def __init__(
        self,
        authentication: AuthenticationFilter,
        authorization: AuthorizationFilter,
    ) -> None:
        self.authentication = authentication
        self.authorization = authorization

    def process(self, ctx: RequestContext) -> FilterOutcome:
        authenticated = self.authentication(ctx)
        rejection = self.authorization(authenticated)
        return FilterOutcome(context=authenticated, rejection=rejection)


__all__ = [
    "RequestContext",
    "Rejection",
    "FilterOutcome",
    "AuthenticationFilter",
    "TenantMembershipLookup",
    "AuthorizationFilter",
    "SecurityFilterPipeline",
]
