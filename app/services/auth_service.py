from __future__ import annotations

import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from app.core.errors import AuthenticationError, ValidationError
from app.models.user import User
from app.repos.org_repo import OrgRepo
from app.repos.user_repo import UserRepo

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 6

_ph = PasswordHasher()


def hash_password(plain_password: str) -> str:
    if not plain_password:
        raise ValueError("password must be non-empty")
    # Argon2 encodes salt and parameters into the returned string.
    return _ph.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return _ph.verify(password_hash, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


def validate_password(plain_password: str | None) -> str:
    if not plain_password or len(plain_password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters",
            field="password",
        )
    return plain_password


async def authenticate_user(
    users: UserRepo,
    orgs: OrgRepo,
    email: str,
    password: str,
    *,
    org_slug: str | None = None,
) -> User:
    """Resolve the member for ``email`` and check the password.

    Email is unique per organization only, so ``org_slug`` picks the
    organization when the address belongs to more than one.  Invitations
    that were never accepted are not memberships and are ignored.
    """
    email = email.strip().lower()
    if org_slug:
        org = await orgs.get_by_slug(org_slug)
        user = await users.get_by_email(org.id, email) if org else None
        candidates = [user] if user else []
    else:
        candidates = await users.find_by_email(email)
    candidates = [u for u in candidates if not u.is_pending_invite]

    if not candidates:
        logger.info("Login failed: unknown email")
        raise AuthenticationError("Invalid credentials")
    if len(candidates) > 1:
        raise ValidationError(
            "This email belongs to several organizations; pass organization",
            field="organization",
        )

    user = candidates[0]
    if not verify_password(password, user.password_hash):
        logger.info("Login failed: bad password user=%s", user.id)
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        logger.info("Login rejected: inactive user=%s", user.id)
        raise AuthenticationError("Your account has been deactivated")

    org = await orgs.get_by_id(user.organization_id)
    if org is None or not org.is_active:
        logger.info("Login rejected: inactive organization user=%s", user.id)
        raise AuthenticationError("Your organization has been deactivated")

    try:
        if _ph.check_needs_rehash(user.password_hash):
            await users.update(user.id, password_hash=_ph.hash(password))
            logger.info("Rehashed password for user=%s", user.id)
    except InvalidHash:
        raise AuthenticationError("Invalid credentials") from None

    return user
