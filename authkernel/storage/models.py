from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def refresh_token_digest(token: str) -> str:
    """Digest under which a refresh token is stored; raw tokens are never persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class Principal:
    id: str
    username: str
    password_hash: str
    role: str = "USER"
    refresh_token_hash: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def public_view(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "created_at": self.created_at.isoformat(),
        }
