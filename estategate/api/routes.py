from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, Response

from estategate.api.schemas import (
    AddCommunityAdminsRequest,
    CommunityResponse,
    CreateCommunityRequest,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    PasswordAction,
    RegisterRequest,
    UserResponse,
)
from estategate.config import UUID_PATTERN
from estategate.logging import get_logger
from estategate.service.errors import (
    AuthenticationError,
    NotFoundError,
    UserNotFoundError,
    ValidationError,
)
from estategate.service.runtime import get_runtime
from estategate.storage.models import Community, User

logger = get_logger(__name__)

router = APIRouter()


def get_identity(request: Request) -> Optional[str]:
    """Identity attached by the security filters, or None for anonymous calls."""
    return getattr(request.state, "identity", None)


def require_identity(identity: Optional[str] = Depends(get_identity)) -> str:
    if not identity:
        raise AuthenticationError()
    return identity


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        user_id=user.id,
        email=user.email,
        name=user.name,
        email_confirmed=user.email_confirmed,
    )


def _community_to_response(community: Community) -> CommunityResponse:
    return CommunityResponse(
        community_id=community.id,
        name=community.name,
        district=community.district,
        admin_ids=list(community.admin_ids),
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
def login(body: LoginRequest, response: Response):
    """Exchange email and password for a bearer credential.

    The credential is returned both in the configured token header and in the
    response body.
    """
    runtime = get_runtime()
    auth = runtime.login.login(body.email, body.password)
    settings = runtime.settings
    response.headers[settings.token_header_name] = f"{settings.token_header_prefix}{auth.token}"
    return Envelope(
        status="ok",
        data=LoginResponse(user_id=auth.user_id, token=auth.token, expires_at=auth.expires_at),
    )


@router.post("/users", response_model=Envelope, status_code=201, tags=["users"])
def register(body: RegisterRequest):
    runtime = get_runtime()
    user = runtime.accounts.register(body.email, body.password, name=body.name)
    return Envelope(status="ok", data=_user_to_response(user))


@router.get("/users/me", response_model=Envelope, tags=["users"])
def get_me(identity: str = Depends(require_identity)):
    runtime = get_runtime()
    user = runtime.store.get_user(identity)
    if not user:
        raise UserNotFoundError()
    return Envelope(status="ok", data=_user_to_response(user))


@router.get("/users/{user_id}/email-confirm/{token}", response_model=Envelope, tags=["users"])
def confirm_email(user_id: str, token: str):
    runtime = get_runtime()
    confirmed = runtime.accounts.confirm_email(user_id, token)
    return Envelope(status="ok", data={"confirmed": confirmed})


@router.post("/users/{user_id}/email-confirm-resend", response_model=Envelope, tags=["users"])
def resend_email_confirm(user_id: str):
    runtime = get_runtime()
    sent = runtime.accounts.resend_email_confirm(user_id)
    return Envelope(status="ok", data={"sent": sent})


@router.post("/users/password", response_model=Envelope, tags=["users"])
def password_action(
    body: ForgotPasswordRequest,
    action: PasswordAction = Query(...),
):
    """Request a password recovery code, or redeem one for a new password."""
    runtime = get_runtime()
    if action == PasswordAction.FORGOT:
        sent = runtime.accounts.request_password_reset(body.email)
        return Envelope(status="ok", data={"sent": sent})
    if not body.token or not body.new_password:
        raise ValidationError(
            "token and new_password are required",
            detail={"fields": ["token", "new_password"]},
        )
    changed = runtime.accounts.reset_password(body.email, body.token, body.new_password)
    return Envelope(status="ok", data={"changed": changed})


@router.post("/communities", response_model=Envelope, status_code=201, tags=["communities"])
def create_community(
    body: CreateCommunityRequest, identity: str = Depends(require_identity)
):
    runtime = get_runtime()
    community = runtime.store.create_community(body.name, district=body.district)
    runtime.store.add_community_admin(community.id, identity)
    community = runtime.store.get_community(community.id)
    logger.info("community_created", community_id=community.id, user_id=identity)
    return Envelope(status="ok", data=_community_to_response(community))


# Same shape the admin path patterns guard, so no id reaches these handlers
# without passing the authorization filter first.
CommunityId = Path(pattern=f"^{UUID_PATTERN}$")


@router.get("/communities/{community_id}/admins", response_model=Envelope, tags=["communities"])
def list_community_admins(community_id: str = CommunityId):
    runtime = get_runtime()
    admins = runtime.store.find_community_admins(community_id)
    if admins is None:
        raise NotFoundError("community not found", detail={"community_id": community_id})
    return Envelope(status="ok", data=[_user_to_response(user) for user in admins])


@router.post("/communities/{community_id}/admins", response_model=Envelope, tags=["communities"])
def add_community_admins(body: AddCommunityAdminsRequest, community_id: str = CommunityId):
    runtime = get_runtime()
    if runtime.store.get_community(community_id) is None:
        raise NotFoundError("community not found", detail={"community_id": community_id})
    community = runtime.store.add_community_admins(community_id, body.admin_ids)
    logger.info(
        "community_admins_added",
        community_id=community_id,
        user_ids=body.admin_ids,
    )
    return Envelope(status="ok", data=_community_to_response(community))
