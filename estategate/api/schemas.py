from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _validate_email(value: str) -> str:
    value = value.strip()
    if not _EMAIL_PATTERN.match(value):
        raise ValueError("invalid email address")
    return value.lower()


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=256)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)


class LoginResponse(BaseModel):
    user_id: str
    token: str
    expires_at: datetime


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=8, max_length=256)
    name: Optional[str] = Field(None, max_length=200)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)


class UserResponse(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    email_confirmed: bool


class PasswordAction(str, Enum):
    FORGOT = "forgot"
    RESET = "reset"


class ForgotPasswordRequest(BaseModel):
    email: str
    token: Optional[str] = None
    new_password: Optional[str] = Field(None, min_length=8, max_length=256)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)


class CreateCommunityRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    district: Optional[str] = Field(None, max_length=200)


class CommunityResponse(BaseModel):
    community_id: str
    name: str
    district: Optional[str] = None
    admin_ids: List[str] = Field(default_factory=list)


class AddCommunityAdminsRequest(BaseModel):
    admin_ids: List[str] = Field(..., min_length=1)
