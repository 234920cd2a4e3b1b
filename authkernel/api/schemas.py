from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "validation_error",
    "conflict",
    "service_unavailable",
    "server_error",
})

_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,64}$")
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and drop zero-width characters that enable lookalike names."""
    zero_width = "​‌‍﻿"
    cleaned = "".join(c for c in value if c not in zero_width)
    return unicodedata.normalize("NFKC", cleaned)


def _validate_username(value: str) -> str:
    normalized = _normalize_unicode(value.strip())
    if not _USERNAME_PATTERN.match(normalized):
        raise ValueError(
            "username must be 3-64 characters of letters, digits, '.', '_' or '-'"
        )
    return normalized


def _validate_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(value) > MAX_PASSWORD_LENGTH:
        raise ValueError(f"password must be at most {MAX_PASSWORD_LENGTH} characters")
    return value


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class SignupRequest(BaseModel):
    username: str
    password: str
    role: Optional[str] = Field(default=None, max_length=32)

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        return _validate_username(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password(value)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        return _normalize_unicode(value.strip())


class TokenRefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class PrincipalResponse(BaseModel):
    id: str
    username: str
    role: str
    created_at: datetime


class SignupResponse(BaseModel):
    message: str
    principal: PrincipalResponse


class AuthResponse(BaseModel):
    message: str
    principal_id: str
    username: str
    role: str
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    access_expires_in: int
    refresh_expires_in: int


class LogoutResponse(BaseModel):
    message: str
    session_ended: bool


class ProtectedResourceResponse(BaseModel):
    message: str
    principal_id: str
    username: str
    role: str
