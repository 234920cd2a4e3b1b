from __future__ import annotations

from enum import Enum
from typing import Iterable

from authkernel.logging import get_logger
from authkernel.service.codec import ClaimSet
from authkernel.service.errors import RoleMismatchError

logger = get_logger(__name__)


class AccessDecision(str, Enum):
    ALLOWED = "allowed"
    FORBIDDEN = "forbidden"


class RoleGuard:
    """Decide access from already-verified claims.

    ``known_roles`` comes from configuration. A role outside that set never
    matches, even when a caller lists it as allowed.
    """

    def __init__(self, known_roles: Iterable[str]) -> None:
        self.known_roles = frozenset(known_roles)
        if not self.known_roles:
            raise ValueError("at least one role must be known")

    def is_known(self, role: str) -> bool:
        return role in self.known_roles

    def authorize(self, claims: ClaimSet, allowed_roles: Iterable[str]) -> AccessDecision:
        if claims.role in self.known_roles and claims.role in frozenset(allowed_roles):
            return AccessDecision.ALLOWED
        return AccessDecision.FORBIDDEN

    def require(self, claims: ClaimSet, allowed_roles: Iterable[str]) -> ClaimSet:
        allowed = frozenset(allowed_roles)
        if self.authorize(claims, allowed) is AccessDecision.FORBIDDEN:
            logger.info(
                "role_forbidden",
                principal_id=claims.principal_id,
                role=claims.role,
                allowed=sorted(allowed),
            )
            raise RoleMismatchError("insufficient role for this resource")
        return claims
