"""JWT access tokens (ES256) and invite tokens.

Access tokens carry ``sub`` (user id), ``org`` (organization id) and
``role``.  ``require_user`` reloads the user on every request, so a
deactivation or role change applies before the token expires.
"""

from __future__ import annotations

import hashlib
import secrets
import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

from app.models.user import User

# Dev/test: an ephemeral EC key pair generated on import.
_private_key = ec.generate_private_key(ec.SECP256R1())
_public_key = _private_key.public_key()

ALGORITHM = "ES256"
ISSUER = "report-tracker"
AUDIENCE = "report-tracker"
ACCESS_TOKEN_TTL_MIN = 60


def create_access_token(user: User) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": str(user.id),
        "org": str(user.organization_id),
        "role": user.role,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256.  Raises jwt.ExpiredSignatureError or
    jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "org", "exp", "iat", "jti"]},
    )


def new_invite_token() -> tuple[str, str]:
    """Return ``(token, sha256_hex)``.  Only the hash is ever stored."""
    token = secrets.token_urlsafe(32)
    return token, hash_invite_token(token)


def hash_invite_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()
