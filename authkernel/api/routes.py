from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, Cookie, Depends, Header, Request, Response

from authkernel.api.error_handling import service_error_response
from authkernel.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    LogoutResponse,
    PrincipalResponse,
    ProtectedResourceResponse,
    SignupRequest,
    SignupResponse,
    TokenRefreshRequest,
)
from authkernel.service.codec import ClaimSet
from authkernel.service.errors import (
    InvalidCredentialError,
    MissingCredentialError,
    ReuseDetectedError,
)
from authkernel.service.runtime import get_runtime
from authkernel.service.tokens import TokenPair
from authkernel.storage.models import Principal

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

router = APIRouter(prefix="/api")


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def _apply_token_cookies(response: Response, tokens: TokenPair) -> None:
    settings = get_runtime().settings
    for name, value, max_age in (
        (ACCESS_COOKIE, tokens.access_token, tokens.access_expires_in),
        (REFRESH_COOKIE, tokens.refresh_token, tokens.refresh_expires_in),
    ):
        response.set_cookie(
            name,
            value,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="strict",
            max_age=max_age,
            path="/",
        )


def _clear_token_cookies(response: Response) -> None:
    secure = get_runtime().settings.cookie_secure
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", secure=secure, httponly=True, samesite="strict")


def _auth_response(message: str, principal: Principal, tokens: TokenPair) -> AuthResponse:
    return AuthResponse(
        message=message,
        principal_id=principal.id,
        username=principal.username,
        role=principal.role,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        access_expires_in=tokens.access_expires_in,
        refresh_expires_in=tokens.refresh_expires_in,
    )


def _presented_refresh_token(
    body: Optional[TokenRefreshRequest], cookie_value: Optional[str]
) -> Optional[str]:
    if body is not None and body.refresh_token:
        return body.refresh_token
    return cookie_value


async def get_claims(
    authorization: Optional[str] = Header(None),
    access_cookie: Optional[str] = Cookie(None, alias=ACCESS_COOKIE),
) -> ClaimSet:
    """Verified access-token claims from the bearer header or the access cookie."""
    token = _extract_bearer(authorization) or access_cookie
    return get_runtime().auth.authenticate(token)


def require_roles(*roles: str) -> Callable:
    allowed = frozenset(roles)

    async def dependency(claims: ClaimSet = Depends(get_claims)) -> ClaimSet:
        return get_runtime().guard.require(claims, allowed)

    return dependency


@router.post("/auth/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(body: SignupRequest):
    """Register a principal.

    Raises:
        400: If the requested role is not configured
        403: If signup is disabled in settings
        409: If the username is taken
    """
    runtime = get_runtime()
    principal = await runtime.auth.signup(body.username, body.password, body.role)
    return Envelope(
        status="ok",
        data=SignupResponse(
            message="User registered successfully.",
            principal=PrincipalResponse(**principal.public_view()),
        ),
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response):
    """Authenticate with username and password and set both token cookies.

    Any refresh token issued by an earlier login stops working.
    """
    runtime = get_runtime()
    principal, tokens = await runtime.auth.login(body.username, body.password)
    _apply_token_cookies(response, tokens)
    return Envelope(status="ok", data=_auth_response("Login successful.", principal, tokens))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(
    request: Request,
    response: Response,
    body: Optional[TokenRefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
):
    """Exchange the current refresh token for a new pair.

    The presented token is single-use; presenting it again is reported as reuse.
    A rejected refresh also clears both token cookies.
    """
    runtime = get_runtime()
    try:
        principal, tokens = await runtime.auth.refresh(
            _presented_refresh_token(body, refresh_cookie)
        )
    except (MissingCredentialError, InvalidCredentialError, ReuseDetectedError) as exc:
        error = service_error_response(request, exc)
        _clear_token_cookies(error)
        return error
    _apply_token_cookies(response, tokens)
    return Envelope(
        status="ok", data=_auth_response("Token refreshed.", principal, tokens)
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    response: Response,
    body: Optional[TokenRefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
):
    runtime = get_runtime()
    ended = await runtime.auth.logout(_presented_refresh_token(body, refresh_cookie))
    _clear_token_cookies(response)
    return Envelope(
        status="ok",
        data=LogoutResponse(message="Logged out successfully.", session_ended=ended),
    )


def _protected(message: str, claims: ClaimSet) -> Envelope:
    return Envelope(
        status="ok",
        data=ProtectedResourceResponse(
            message=message,
            principal_id=claims.principal_id,
            username=claims.username,
            role=claims.role,
        ),
    )


@router.get("/user/profile", response_model=Envelope, tags=["protected"])
async def user_profile(
    claims: ClaimSet = Depends(require_roles("USER", "ADMIN", "MODERATOR")),
):
    return _protected(f"Welcome {claims.username}, this is your profile.", claims)


@router.get("/admin/dashboard", response_model=Envelope, tags=["protected"])
async def admin_dashboard(claims: ClaimSet = Depends(require_roles("ADMIN"))):
    return _protected(f"Admin dashboard for {claims.username}", claims)


@router.get("/superadmin/secret", response_model=Envelope, tags=["protected"])
async def superadmin_secret(claims: ClaimSet = Depends(require_roles("SUPERADMIN"))):
    return _protected(f"Superadmin secret area for {claims.username}", claims)
