from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from authkernel.logging import get_logger
from authkernel.service.errors import (
    InvalidCredentialError,
    MissingCredentialError,
    ReuseDetectedError,
)
from authkernel.service.tokens import (
    CredentialIssuer,
    CredentialVerifier,
    TokenPair,
    Unauthenticated,
)
from authkernel.storage.models import Principal, refresh_token_digest

logger = get_logger(__name__)


class PrincipalStore(Protocol):
    def get_principal(self, principal_id: str) -> Optional[Principal]: ...

    def get_principal_by_username(self, username: str) -> Optional[Principal]: ...

    def set_refresh_token(self, principal_id: str, token_hash: Optional[str]) -> None: ...

    def clear_refresh_token(self, principal_id: str) -> None: ...

    def swap_refresh_token(
        self, principal_id: str, expected_hash: str, new_hash: Optional[str]
    ) -> bool: ...


@dataclass(frozen=True)
class RotationResult:
    principal: Principal
    tokens: TokenPair


class RotationController:
    """Single-use refresh tokens with replay detection.

    Each principal has one stored refresh-token digest. Presenting the token
    that matches it yields a new pair and atomically replaces the digest;
    presenting any other validly signed token for that principal is a replay.
    """

    def __init__(
        self,
        store: PrincipalStore,
        issuer: CredentialIssuer,
        verifier: CredentialVerifier,
        *,
        revoke_on_reuse: bool = False,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.verifier = verifier
        self.revoke_on_reuse = revoke_on_reuse

    def rotate(self, refresh_token: Optional[str]) -> RotationResult:
        if not refresh_token:
            raise MissingCredentialError("refresh token required")

        claims = self.verifier.verify_refresh(refresh_token)
        if isinstance(claims, Unauthenticated):
            raise InvalidCredentialError("invalid refresh token")

        principal = self.store.get_principal(claims.principal_id)
        if principal is None:
            logger.info("refresh_principal_missing", principal_id=claims.principal_id)
            raise InvalidCredentialError("invalid refresh token")

        if principal.refresh_token_hash is None:
            raise MissingCredentialError("no active session")

        presented = refresh_token_digest(refresh_token)
        if presented != principal.refresh_token_hash:
            self._on_reuse(principal, claims.token_id, stage="compare")
            raise ReuseDetectedError("refresh token reuse detected")

        tokens = self.issuer.issue_pair(principal)
        swapped = self.store.swap_refresh_token(
            principal.id, presented, refresh_token_digest(tokens.refresh_token)
        )
        if not swapped:
            # Another request rotated this token between our read and write
            self._on_reuse(principal, claims.token_id, stage="swap")
            raise ReuseDetectedError("refresh token reuse detected")

        logger.info("refresh_token_rotated", principal_id=principal.id)
        return RotationResult(principal=principal, tokens=tokens)

    def logout(self, refresh_token: Optional[str]) -> bool:
        """End the session bound to ``refresh_token``.

        Returns False when there was nothing to end: no token, an unverifiable
        token, or an unknown principal. Never raises for credential problems.
        """
        if not refresh_token:
            return False
        claims = self.verifier.verify_refresh(refresh_token)
        if isinstance(claims, Unauthenticated):
            return False
        principal = self.store.get_principal(claims.principal_id)
        if principal is None:
            return False
        self.store.clear_refresh_token(principal.id)
        logger.info("session_ended", principal_id=principal.id)
        return True

    def _on_reuse(self, principal: Principal, token_id: str, *, stage: str) -> None:
        logger.warning(
            "refresh_token_reuse_detected",
            principal_id=principal.id,
            jti=token_id,
            stage=stage,
            revoked=self.revoke_on_reuse,
        )
        if self.revoke_on_reuse:
            self.store.clear_refresh_token(principal.id)
