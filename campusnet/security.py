"""
Password hashing, access tokens and one-time secrets.

Access tokens are HS256 JWTs signed with the shared ``JWT_SECRET`` so every
service can validate them locally without calling the auth service.
Verification tokens and reset OTPs are only ever stored as SHA-256 digests.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError
from passlib.context import CryptContext

from campusnet.config import settings
from campusnet.timeutils import utcnow

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class TokenError(Exception):
    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(
    *,
    user_id: int,
    email: str,
    role: str,
    ttl: timedelta | None = None,
) -> str:
    now = utcnow()
    ttl = ttl or timedelta(minutes=settings.JWT_EXPIRE_MINUTES)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "iat", "sub"]},
        )
    except InvalidTokenError as e:
        raise TokenError(str(e)) from e


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def generate_verification_token() -> tuple[str, str]:
    """Return ``(raw_token, stored_digest)``; only the raw token leaves the server."""
    raw = secrets.token_hex(32)
    return raw, sha256_hex(raw)


def generate_otp() -> tuple[str, str]:
    """Return a six digit OTP and its digest."""
    otp = f"{secrets.randbelow(900000) + 100000}"
    return otp, sha256_hex(otp)
