"""Access tokens from the Student Hub identity service.

Tokens are HS256, signed with ``SECRET_KEY``. Only ``sub`` is needed by this
service; ``name``, ``email`` and ``roles`` are read when present.
"""

from __future__ import annotations

import time
from typing import Any, Dict

import jwt
from jwt import InvalidTokenError

from app.settings import settings


ALGORITHM = "HS256"
ISSUER = "studenthub-identity"
AUDIENCE = "studenthub-api"
REQUIRED_CLAIMS = ("exp", "iat", "iss", "aud", "sub")
CLOCK_SKEW_SECONDS = 5


def encode_access(claims: Dict[str, Any], *, ttl_seconds: int = 3600) -> str:
    """Sign ``claims`` as an access token; the identity service does this in production."""
    issued_at = int(time.time())
    token = {"iss": ISSUER, "aud": AUDIENCE, "iat": issued_at, "exp": issued_at + ttl_seconds, **claims}
    return jwt.encode(token, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> Dict[str, Any]:
    claims = jwt.decode(
        token,
        settings.secret_key,
        algorithms=[ALGORITHM],
        audience=AUDIENCE,
        issuer=ISSUER,
        leeway=CLOCK_SKEW_SECONDS,
        options={"require": list(REQUIRED_CLAIMS)},
    )
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise InvalidTokenError("missing_claim:sub")
    return claims
