from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - unauthorized (401)
    - forbidden (403)
    - validation_error (400)
    - conflict (409)
    - service_unavailable (503)
    - server_error (500)

    Subclasses may also set ``reason``, which is surfaced to clients as
    ``details.reason`` so they can tell a missing credential from a replayed
    one without parsing messages.
    """

    status_code: int = 400
    error_code: str = "validation_error"
    reason: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = dict(detail or {})
        if self.reason and "reason" not in self.detail:
            self.detail["reason"] = self.reason


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class MissingCredentialError(AuthenticationError):
    """No credential was presented, or the session it belonged to has ended."""
    reason = "missing_credential"


class InvalidCredentialError(AuthenticationError):
    """Credential was malformed, forged or expired.

    The precise cause is deliberately not exposed.
    """
    reason = "invalid_credential"


class ReuseDetectedError(AuthenticationError):
    """A validly signed refresh token was presented after being superseded."""
    reason = "reuse_detected"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class RoleMismatchError(ForbiddenError):
    reason = "role_mismatch"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class DuplicatePrincipalError(ConflictError):
    reason = "duplicate_principal"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "MissingCredentialError",
    "InvalidCredentialError",
    "ReuseDetectedError",
    "ForbiddenError",
    "RoleMismatchError",
    "ConflictError",
    "DuplicatePrincipalError",
]
