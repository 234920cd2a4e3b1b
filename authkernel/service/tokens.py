from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from authkernel.config import Settings
from authkernel.logging import get_logger
from authkernel.service.codec import (
    ClaimSet,
    DecodeFailure,
    IdentityClaims,
    decode_token,
    encode_token,
)
from authkernel.storage.models import Principal

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class TokenSecrets:
    """Signing keys and lifetimes for both credential classes.

    Built once at startup and handed to the issuer and verifier; neither reads
    configuration on its own.
    """

    access_secret: str
    refresh_secret: str
    access_ttl_seconds: int = 15 * 60
    refresh_ttl_seconds: int = 7 * 24 * 60 * 60

    def __post_init__(self) -> None:
        if not self.access_secret or not self.refresh_secret:
            raise ValueError("token secrets must not be empty")
        if self.access_secret == self.refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        if self.access_ttl_seconds <= 0 or self.refresh_ttl_seconds <= 0:
            raise ValueError("token lifetimes must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenSecrets":
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl_seconds=settings.access_token_ttl_minutes * 60,
            refresh_ttl_seconds=settings.refresh_token_ttl_minutes * 60,
        )


class TokenClass(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int


class Unauthenticated:
    """Verification outcome for any rejected credential.

    Carries no reason; the cause is only visible in logs.
    """

    _instance: Optional["Unauthenticated"] = None

    def __new__(cls) -> "Unauthenticated":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNAUTHENTICATED"


UNAUTHENTICATED = Unauthenticated()

VerifyResult = Union[ClaimSet, Unauthenticated]


def _identity(principal: Principal) -> IdentityClaims:
    return IdentityClaims(
        principal_id=principal.id, username=principal.username, role=principal.role
    )


class CredentialIssuer:
    def __init__(self, secrets: TokenSecrets, *, clock: Clock = time.time) -> None:
        self._secrets = secrets
        self._clock = clock

    def issue_access_token(self, principal: Principal) -> str:
        return encode_token(
            _identity(principal),
            self._secrets.access_secret,
            self._secrets.access_ttl_seconds,
            now=self._clock(),
        )

    def issue_refresh_token(self, principal: Principal) -> str:
        return encode_token(
            _identity(principal),
            self._secrets.refresh_secret,
            self._secrets.refresh_ttl_seconds,
            now=self._clock(),
        )

    def issue_pair(self, principal: Principal) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(principal),
            refresh_token=self.issue_refresh_token(principal),
            access_expires_in=self._secrets.access_ttl_seconds,
            refresh_expires_in=self._secrets.refresh_ttl_seconds,
        )


class CredentialVerifier:
    """Checks signature and validity window; every failure is ``UNAUTHENTICATED``."""

    def __init__(self, secrets: TokenSecrets, *, clock: Clock = time.time) -> None:
        self._secrets = secrets
        self._clock = clock

    def verify_access(self, token: Optional[str]) -> VerifyResult:
        return self._verify(token, self._secrets.access_secret, TokenClass.ACCESS)

    def verify_refresh(self, token: Optional[str]) -> VerifyResult:
        return self._verify(token, self._secrets.refresh_secret, TokenClass.REFRESH)

    def _verify(self, token: Optional[str], secret: str, token_class: TokenClass) -> VerifyResult:
        if not token:
            return UNAUTHENTICATED
        result = decode_token(token, secret, now=self._clock())
        if isinstance(result, DecodeFailure):
            logger.info(
                "credential_rejected",
                credential_class=token_class.value,
                reason=result.reason.value,
            )
            return UNAUTHENTICATED
        return result


__all__ = [
    "CredentialIssuer",
    "CredentialVerifier",
    "TokenClass",
    "TokenPair",
    "TokenSecrets",
    "UNAUTHENTICATED",
    "Unauthenticated",
    "VerifyResult",
]
