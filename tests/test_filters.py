"""Tests for the authentication and community-admin authorization stages."""

import uuid
from datetime import timedelta

import pytest

from estategate.config import DEFAULT_ADMIN_PATH_PATTERNS
from estategate.security.codec import BearerClaim, TokenCodec
from estategate.security.filters import (
    AuthenticationFilter,
    AuthorizationFilter,
    RequestContext,
    SecurityFilterPipeline,
)
from estategate.security.membership import CommunityAdminLookup
from estategate.service.errors import NotFoundError
from estategate.storage.memory import MemoryStore

SECRET = "s" * 64


class FakeLookup:
    def __init__(self, admins=None, error=None):
        self.admins = admins or {}
        self.error = error
        self.calls = []

    def is_admin_of_tenant(self, tenant_id, identity):
        self.calls.append((tenant_id, identity))
        if self.error is not None:
            raise self.error
        return identity in self.admins.get(tenant_id, set())


@pytest.fixture
def codec(frozen_clock):
    return TokenCodec(clock=frozen_clock)


@pytest.fixture
def authn(codec):
    return AuthenticationFilter(codec, SECRET)


def _bearer(codec, frozen_clock, identity="user-1", ttl=timedelta(hours=1), secret=SECRET):
    return "Bearer " + codec.encode(BearerClaim(identity, frozen_clock() + ttl), secret)


class TestAuthenticationFilter:
    def test_no_header_is_anonymous(self, authn):
        ctx = authn(RequestContext("GET", "/users/me"))
        assert ctx.identity is None

    def test_valid_bearer_sets_identity(self, authn, codec, frozen_clock):
        ctx = RequestContext(
            "GET", "/users/me", {"Authorization": _bearer(codec, frozen_clock)}
        )
        assert authn(ctx).identity == "user-1"

    def test_header_lookup_is_case_insensitive(self, authn, codec, frozen_clock):
        ctx = RequestContext(
            "GET", "/users/me", {"authorization": _bearer(codec, frozen_clock)}
        )
        assert authn(ctx).identity == "user-1"

    def test_other_scheme_is_anonymous(self, authn, codec, frozen_clock):
        token = _bearer(codec, frozen_clock)[len("Bearer "):]
        ctx = RequestContext("GET", "/users/me", {"Authorization": f"Basic {token}"})
        assert authn(ctx).identity is None

    @pytest.mark.parametrize(
        "header", ["Bearer ", "Bearer not-a-token", "Bearer a.b.c"]
    )
    def test_garbage_is_anonymous(self, authn, header):
        ctx = RequestContext("GET", "/users/me", {"Authorization": header})
        assert authn(ctx).identity is None

    def test_expired_is_anonymous(self, authn, codec, frozen_clock):
        header = _bearer(codec, frozen_clock, ttl=timedelta(seconds=-1))
        ctx = RequestContext("GET", "/users/me", {"Authorization": header})
        assert authn(ctx).identity is None

    def test_foreign_secret_is_anonymous(self, authn, codec, frozen_clock):
        header = _bearer(codec, frozen_clock, secret="o" * 64)
        ctx = RequestContext("GET", "/users/me", {"Authorization": header})
        assert authn(ctx).identity is None

    def test_weak_configured_secret_is_anonymous(self, codec, frozen_clock):
        weak = AuthenticationFilter(codec, "short")
        ctx = RequestContext("GET", "/", {"Authorization": _bearer(codec, frozen_clock)})
        assert weak(ctx).identity is None

    def test_inbound_identity_is_discarded(self, authn):
        """An identity set before the filter runs is never trusted."""
        ctx = RequestContext("GET", "/users/me", identity="spoofed")
        assert authn(ctx).identity is None

    def test_custom_header_and_prefix(self, codec, frozen_clock):
        token = codec.encode(BearerClaim("u", frozen_clock() + timedelta(hours=1)), SECRET)
        custom = AuthenticationFilter(
            codec, SECRET, header_name="X-Auth-Token", header_prefix="Token "
        )
        ctx = RequestContext("GET", "/", {"X-Auth-Token": f"Token {token}"})
        assert custom(ctx).identity == "u"


class TestAuthorizationFilter:
    def setup_method(self):
        self.tenant = str(uuid.uuid4())
        self.path = f"/communities/{self.tenant}/admins"

    def test_unprotected_path_skips_lookup(self):
        lookup = FakeLookup()
        authz = AuthorizationFilter(lookup, DEFAULT_ADMIN_PATH_PATTERNS)

        assert authz(RequestContext("GET", "/users/me")) is None
        assert authz(RequestContext("GET", "/communities/not-a-uuid/admins")) is None
        assert lookup.calls == []

    def test_admin_passes(self):
        lookup = FakeLookup({self.tenant: {"user-1"}})
        authz = AuthorizationFilter(lookup, DEFAULT_ADMIN_PATH_PATTERNS)

        assert authz(RequestContext("POST", self.path, identity="user-1")) is None
        assert lookup.calls == [(self.tenant, "user-1")]

    def test_amenities_path_is_protected(self):
        lookup = FakeLookup({self.tenant: {"user-1"}})
        authz = AuthorizationFilter(lookup, DEFAULT_ADMIN_PATH_PATTERNS)
        path = f"/communities/{self.tenant}/amenities"

        assert authz(RequestContext("GET", path, identity="user-1")) is None
        rejection = authz(RequestContext("GET", path, identity="user-2"))
        assert rejection.status_code == 403

    def test_non_admin_rejected(self):
        authz = AuthorizationFilter(
            FakeLookup({self.tenant: {"user-1"}}), DEFAULT_ADMIN_PATH_PATTERNS
        )
        rejection = authz(RequestContext("POST", self.path, identity="user-2"))

        assert rejection.status_code == 403
        assert rejection.error_code == "forbidden"

    def test_anonymous_rejected_without_lookup(self):
        lookup = FakeLookup({self.tenant: {"user-1"}})
        authz = AuthorizationFilter(lookup, DEFAULT_ADMIN_PATH_PATTERNS)

        rejection = authz(RequestContext("POST", self.path))

        assert rejection.status_code == 403
        assert lookup.calls == []

    def test_lookup_failure_rejects(self):
        authz = AuthorizationFilter(
            FakeLookup(error=RuntimeError("db down")), DEFAULT_ADMIN_PATH_PATTERNS
        )
        rejection = authz(RequestContext("POST", self.path, identity="user-1"))
        assert rejection is not None
        assert rejection.status_code == 403

    def test_prefixed_mount_is_matched(self):
        lookup = FakeLookup()
        authz = AuthorizationFilter(lookup, DEFAULT_ADMIN_PATH_PATTERNS)

        rejection = authz(RequestContext("POST", f"/api{self.path}", identity="user-1"))

        assert rejection is not None
        assert lookup.calls == [(self.tenant, "user-1")]

    def test_configurable_401(self):
        authz = AuthorizationFilter(
            FakeLookup(), DEFAULT_ADMIN_PATH_PATTERNS, reject_status=401
        )
        rejection = authz(RequestContext("POST", self.path))

        assert rejection.status_code == 401
        assert rejection.error_code == "unauthorized"

    def test_pattern_requires_tenant_group(self):
        with pytest.raises(ValueError):
            AuthorizationFilter(FakeLookup(), [r"/communities/[^/]+/admins"])


class TestCommunityAdminLookup:
    def test_multiple_admins(self):
        store = MemoryStore()
        first = store.create_user("first@example.com")
        second = store.create_user("second@example.com")
        outsider = store.create_user("outsider@example.com")
        community = store.create_community("Maple Court")
        store.add_community_admin(community.id, first.id)
        store.add_community_admin(community.id, second.id)
        lookup = CommunityAdminLookup(store)

        assert lookup.is_admin_of_tenant(community.id, first.id) is True
        assert lookup.is_admin_of_tenant(community.id, second.id) is True
        assert lookup.is_admin_of_tenant(community.id, outsider.id) is False

    def test_unknown_community_raises(self):
        lookup = CommunityAdminLookup(MemoryStore())
        with pytest.raises(NotFoundError):
            lookup.is_admin_of_tenant(str(uuid.uuid4()), "user-1")

    def test_unknown_community_is_rejected_by_filter(self):
        authz = AuthorizationFilter(
            CommunityAdminLookup(MemoryStore()), DEFAULT_ADMIN_PATH_PATTERNS
        )
        path = f"/communities/{uuid.uuid4()}/admins"
        assert authz(RequestContext("POST", path, identity="user-1")) is not None


class TestPipeline:
    def test_authenticated_admin_allowed(self, codec, frozen_clock):
        tenant = str(uuid.uuid4())
        pipeline = SecurityFilterPipeline(
            AuthenticationFilter(codec, SECRET),
            AuthorizationFilter(FakeLookup({tenant: {"user-1"}}), DEFAULT_ADMIN_PATH_PATTERNS),
        )
        ctx = RequestContext(
            "POST",
            f"/communities/{tenant}/admins",
            {"Authorization": _bearer(codec, frozen_clock)},
        )

        outcome = pipeline.process(ctx)

        assert outcome.allowed
        assert outcome.context.identity == "user-1"

    def test_bad_token_on_protected_path_rejected(self, codec):
        tenant = str(uuid.uuid4())
        lookup = FakeLookup({tenant: {"user-1"}})
        pipeline = SecurityFilterPipeline(
            AuthenticationFilter(codec, SECRET),
            AuthorizationFilter(lookup, DEFAULT_ADMIN_PATH_PATTERNS),
        )
        ctx = RequestContext(
            "POST", f"/communities/{tenant}/admins", {"Authorization": "Bearer junk"}
        )

        outcome = pipeline.process(ctx)

        assert not outcome.allowed
        assert outcome.context.identity is None
        assert lookup.calls == []

    def test_bad_token_on_open_path_allowed(self, codec):
        pipeline = SecurityFilterPipeline(
            AuthenticationFilter(codec, SECRET),
            AuthorizationFilter(FakeLookup(), DEFAULT_ADMIN_PATH_PATTERNS),
        )
        outcome = pipeline.process(
            RequestContext("GET", "/users/me", {"Authorization": "Bearer junk"})
        )
        assert outcome.allowed
        assert outcome.context.identity is None
