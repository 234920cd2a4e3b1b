"""Signed, expiring credential encoding.

Tokens are compact HS256 JWTs. Decoding never raises for bad input; it returns
either a :class:`ClaimSet` or a :class:`DecodeFailure` naming what went wrong,
and callers branch on ``isinstance(result, DecodeFailure)``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import math
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from authkernel.logging import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"
_REQUIRED_STR_CLAIMS = ("sub", "username", "role", "jti")


@dataclass(frozen=True)
class IdentityClaims:
    principal_id: str
    username: str
    role: str


@dataclass(frozen=True)
class ClaimSet:
    principal_id: str
    username: str
    role: str
    token_id: str
    issued_at: float
    expires_at: float

    @property
    def identity(self) -> IdentityClaims:
        return IdentityClaims(self.principal_id, self.username, self.role)


class FailureReason(str, Enum):
    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"


@dataclass(frozen=True)
class DecodeFailure:
    reason: FailureReason


DecodeResult = Union[ClaimSet, DecodeFailure]

_MALFORMED = DecodeFailure(FailureReason.MALFORMED)
_INVALID_SIGNATURE = DecodeFailure(FailureReason.INVALID_SIGNATURE)
_EXPIRED = DecodeFailure(FailureReason.EXPIRED)


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _sign(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return _encode_segment(digest)


def _numeric_date(value: float) -> Union[int, float]:
    # JWT NumericDate may be fractional; whole seconds stay integers on the wire
    return int(value) if float(value).is_integer() else float(value)


def _is_numeric_date(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _json_segment(obj: dict[str, Any]) -> str:
    return _encode_segment(json.dumps(obj, separators=(",", ":")).encode())


def encode_token(
    identity: IdentityClaims,
    secret: str,
    ttl_seconds: float,
    *,
    now: Optional[float] = None,
) -> str:
    """Serialize ``identity`` into a signed token valid for ``ttl_seconds``.

    Every call stamps a fresh ``jti`` so two tokens minted in the same second
    for the same principal are still distinct.
    """
    if not secret:
        raise ValueError("signing secret must not be empty")
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")
    issued = time.time() if now is None else now
    payload = {
        "sub": identity.principal_id,
        "username": identity.username,
        "role": identity.role,
        "jti": str(uuid.uuid4()),
        "iat": _numeric_date(issued),
        "exp": _numeric_date(issued + ttl_seconds),
    }
    signing_input = f"{_json_segment({'alg': ALGORITHM, 'typ': 'JWT'})}.{_json_segment(payload)}"
    return f"{signing_input}.{_sign(signing_input, secret)}"


def decode_token(token: str, secret: str, *, now: Optional[float] = None) -> DecodeResult:
    """Verify ``token`` against ``secret`` and return its claims or a failure.

    The signature is checked before the payload is parsed. A token evaluated
    at exactly its ``exp`` instant is expired.
    """
    if not isinstance(token, str) or not token:
        return _MALFORMED
    # Valid tokens are base64url text; anything else cannot be compared or decoded
    if not token.isascii():
        return _MALFORMED
    parts = token.split(".")
    if len(parts) != 3:
        return _MALFORMED
    header_b64, payload_b64, sig_b64 = parts

    # Reject anything but HS256 to rule out algorithm confusion ("none", RS256 with a public key)
    try:
        header = json.loads(_decode_segment(header_b64))
    except (binascii.Error, ValueError, RecursionError):
        return _MALFORMED
    if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
        logger.debug("token_unsupported_algorithm", alg=header.get("alg") if isinstance(header, dict) else None)
        return _MALFORMED

    expected = _sign(f"{header_b64}.{payload_b64}", secret)
    if not hmac.compare_digest(expected.encode("ascii"), sig_b64.encode("ascii")):
        return _INVALID_SIGNATURE

    try:
        payload = json.loads(_decode_segment(payload_b64))
    except (binascii.Error, ValueError, RecursionError):
        return _MALFORMED
    if not isinstance(payload, dict):
        return _MALFORMED
    if any(not isinstance(payload.get(key), str) or not payload.get(key) for key in _REQUIRED_STR_CLAIMS):
        return _MALFORMED
    exp = payload.get("exp")
    iat = payload.get("iat", 0)
    if not _is_numeric_date(exp) or not _is_numeric_date(iat):
        return _MALFORMED

    current = time.time() if now is None else now
    if current >= exp:
        return _EXPIRED

    return ClaimSet(
        principal_id=payload["sub"],
        username=payload["username"],
        role=payload["role"],
        token_id=payload["jti"],
        issued_at=iat,
        expires_at=exp,
    )


__all__ = [
    "ALGORITHM",
    "ClaimSet",
    "DecodeFailure",
    "DecodeResult",
    "FailureReason",
    "IdentityClaims",
    "decode_token",
    "encode_token",
]
