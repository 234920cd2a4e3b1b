from __future__ import annotations

from typing import List, Optional, Protocol

from authkernel.config import Settings
from authkernel.logging import get_logger
from authkernel.service.codec import ClaimSet
from authkernel.service.errors import (
    AuthenticationError,
    DuplicatePrincipalError,
    ForbiddenError,
    InvalidCredentialError,
    MissingCredentialError,
    ValidationError,
)
from authkernel.service.guard import RoleGuard
from authkernel.service.passwords import Argon2PasswordVerifier
from authkernel.service.rotation import PrincipalStore, RotationController
from authkernel.service.tokens import (
    CredentialIssuer,
    CredentialVerifier,
    TokenPair,
    Unauthenticated,
)
from authkernel.storage.errors import ConstraintViolation
from authkernel.storage.models import Principal, refresh_token_digest

logger = get_logger(__name__)


class AuthStore(PrincipalStore, Protocol):
    def create_principal(self, username: str, password_hash: str, role: str) -> Principal: ...

    def update_principal_role(self, principal_id: str, role: str) -> Optional[Principal]: ...

    def list_principals(self, limit: int = 100) -> List[Principal]: ...


class AuthService:
    """Signup, login, refresh and logout for both persistent and in-memory stores."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        issuer: CredentialIssuer,
        verifier: CredentialVerifier,
        guard: RoleGuard,
        passwords: Optional[Argon2PasswordVerifier] = None,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self.issuer = issuer
        self.verifier = verifier
        self.guard = guard
        self.passwords = passwords or Argon2PasswordVerifier()
        self.rotation = RotationController(
            store, issuer, verifier, revoke_on_reuse=settings.revoke_on_reuse
        )
        self.logger = logger

    async def signup(
        self, username: str, password: str, role: Optional[str] = None
    ) -> Principal:
        if not self.settings.allow_signup:
            raise ForbiddenError("signup is disabled")
        resolved_role = role or self.settings.default_role
        if not self.guard.is_known(resolved_role):
            raise ValidationError(
                "unknown role", detail={"role": role, "allowed": sorted(self.guard.known_roles)}
            )
        return self._create_principal(username, password, resolved_role)

    def _create_principal(self, username: str, password: str, role: str) -> Principal:
        password_hash = self.passwords.hash(password)
        try:
            principal = self.store.create_principal(username, password_hash, role)
        except ConstraintViolation as exc:
            raise DuplicatePrincipalError("username already exists", detail=exc.detail) from exc
        self.logger.info("principal_created", principal_id=principal.id, role=role)
        return principal

    async def login(self, username: str, password: str) -> tuple[Principal, TokenPair]:
        principal = self.store.get_principal_by_username(username)
        if principal is None:
            self.passwords.burn(password)
            self.logger.info("login_failed", reason="unknown_principal")
            raise AuthenticationError("invalid credentials")
        if not self.passwords.compare(password, principal.password_hash):
            self.logger.info("login_failed", principal_id=principal.id, reason="password_mismatch")
            raise AuthenticationError("invalid credentials")
        tokens = self.issuer.issue_pair(principal)
        # Any refresh token issued earlier for this principal stops working here
        self.store.set_refresh_token(principal.id, refresh_token_digest(tokens.refresh_token))
        self.logger.info("login_succeeded", principal_id=principal.id)
        return principal, tokens

    async def refresh(self, refresh_token: Optional[str]) -> tuple[Principal, TokenPair]:
        result = self.rotation.rotate(refresh_token)
        return result.principal, result.tokens

    async def logout(self, refresh_token: Optional[str]) -> bool:
        return self.rotation.logout(refresh_token)

    def authenticate(self, access_token: Optional[str]) -> ClaimSet:
        if not access_token:
            raise MissingCredentialError("access token required")
        claims = self.verifier.verify_access(access_token)
        if isinstance(claims, Unauthenticated):
            raise InvalidCredentialError("invalid access token")
        return claims

    def ensure_principal(self, username: str, password: str, role: str) -> tuple[Principal, bool]:
        """Create ``username`` with ``role``, or promote it if it already exists.

        Returns the principal and whether it was newly created.
        """
        if not self.guard.is_known(role):
            raise ValidationError("unknown role", detail={"role": role})
        existing = self.store.get_principal_by_username(username)
        if existing is None:
            return self._create_principal(username, password, role), True
        if existing.role != role:
            updated = self.store.update_principal_role(existing.id, role)
            self.logger.info("principal_role_updated", principal_id=existing.id, role=role)
            return updated or existing, False
        return existing, False
