from __future__ import annotations

from typing import Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from authkernel.logging import get_logger

logger = get_logger(__name__)


class PasswordVerifier(Protocol):
    def hash(self, plaintext: str) -> str: ...

    def compare(self, plaintext: str, hashed: str) -> bool: ...


class Argon2PasswordVerifier:
    """argon2id hashing; any verification problem compares as a mismatch."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)
        self._dummy_hash: Optional[str] = None

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def compare(self, plaintext: str, hashed: str) -> bool:
        try:
            return self._hasher.verify(hashed, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unverifiable")
            return False

    def burn(self, plaintext: str) -> None:
        """Spend one comparison's worth of work so unknown usernames are not
        distinguishable from wrong passwords by response time."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("authkernel-dummy-password")
        self.compare(plaintext, self._dummy_hash)
