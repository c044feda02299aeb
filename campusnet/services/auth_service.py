"""
Auth service: accounts, credentials and account-level mail.

Design notes
------------
- The service owns the ``users`` table only.  Profiles, posts and the
  rest live in sibling services and are removed through
  ``ServiceClient.cascade_delete_user`` when an account is deleted.
- User records are cached under ``user:{id}`` and ``user:email:{email}``;
  a successful login additionally stores ``session:{id}``.  Every write
  that changes a user invalidates those keys.
- Verification tokens and reset OTPs are stored as SHA-256 digests and
  compared by digest.
- Service functions flush but do not commit; the transaction boundary
  is owned by the ``get_db`` dependency in the router layer.
"""
import logging
import re
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.cache import cache
from campusnet.clients import ServiceClient
from campusnet.config import settings
from campusnet.exceptions import (
    AuthenticationFailed,
    Conflict,
    InvalidRequest,
    NotFound,
    PermissionDenied,
    ServiceUnavailable,
)
from campusnet.mailer import MailDeliveryError, Mailer
from campusnet.models import User
from campusnet.schemas import LoginRequest, RegisterRequest, ResetPasswordRequest
from campusnet.security import (
    create_access_token,
    generate_otp,
    generate_verification_token,
    hash_password,
    sha256_hex,
    verify_password,
)
from campusnet.timeutils import ensure_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

_OTP_RE = re.compile(r"^\d{6}$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_email(email: str) -> str:
    return email.strip().lower()


def _user_to_dict(user: User) -> dict:
    """Serialise a User for API responses and the cache.  Secrets never leave."""
    return {
        "id": user.id,
        "full_name": user.full_name,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "is_verified": user.is_verified,
        "is_active": user.is_active,
        "last_login": isoformat(user.last_login),
        "created_at": isoformat(user.created_at),
    }


def _issue_token(user: User) -> str:
    return create_access_token(user_id=user.id, email=user.email, role=user.role)


async def _get_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


def _check_otp(user: User, otp: str) -> None:
    """Raise InvalidRequest unless *otp* is the live reset code for *user*."""
    if not user.reset_otp_hash or not user.reset_otp_expires:
        raise InvalidRequest(
            "No password reset request found. Please request a new OTP.", code="OTP_NOT_REQUESTED"
        )
    if ensure_utc(user.reset_otp_expires) < utcnow():
        raise InvalidRequest("OTP has expired. Please request a new one.", code="OTP_EXPIRED")
    if sha256_hex(otp) != user.reset_otp_hash:
        raise InvalidRequest("Invalid OTP. Please check and try again.", code="OTP_INVALID")


def _check_otp_format(otp: str) -> None:
    if not _OTP_RE.match(otp or ""):
        raise InvalidRequest("OTP must be a 6-digit number", code="OTP_FORMAT")


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------

async def register(db: AsyncSession, data: RegisterRequest, mailer: Mailer) -> dict:
    """
    Create an unverified account and mail a verification link.

    Returns the user dict plus ``token``.  A mail failure does not undo the
    registration; the returned ``message`` tells the client to resend.
    """
    email = normalize_email(data.email)
    username = data.username.lower()

    if await _get_by_email(db, email) is not None:
        raise Conflict("User already exists with this email", code="EMAIL_TAKEN")
    existing = await db.execute(select(User).where(User.username == username))
    if existing.scalar_one_or_none() is not None:
        raise Conflict("Username is already taken", code="USERNAME_TAKEN")

    raw_token, token_hash = generate_verification_token()
    user = User(
        full_name=data.full_name.strip(),
        username=username,
        email=email,
        password_hash=hash_password(data.password),
        role=data.role,
        verification_token_hash=token_hash,
        verification_token_expires=utcnow() + timedelta(hours=settings.VERIFICATION_TOKEN_TTL_HOURS),
    )
    db.add(user)
    await db.flush()

    try:
        await mailer.send_verification(user.email, user.full_name, raw_token)
        message = "Registration successful. Please check your email to verify your account."
    except MailDeliveryError:
        message = "Registration successful, but the verification email could not be sent. Please request a new one."

    data_out = _user_to_dict(user)
    await cache.cache_user(data_out)
    logger.info("Registered user %s (%s)", user.id, user.role)
    return {**data_out, "token": _issue_token(user), "message": message}


async def login(db: AsyncSession, data: LoginRequest) -> dict:
    user = await _get_by_email(db, data.email)
    if user is None:
        raise NotFound(
            "No account found with this email. Please register first.", code="ACCOUNT_NOT_FOUND"
        )
    if not verify_password(data.password, user.password_hash):
        raise AuthenticationFailed(
            "Incorrect password. Please try again.", code="INCORRECT_PASSWORD"
        )
    if not user.is_active:
        raise PermissionDenied("This account has been deactivated", code="ACCOUNT_INACTIVE")

    user.last_login = utcnow()
    await db.flush()

    data_out = _user_to_dict(user)
    token = _issue_token(user)
    await cache.cache_user(data_out)
    await cache.set(
        cache.session_key(user.id),
        {"user_id": user.id, "token": token, "login_at": data_out["last_login"]},
        ttl=settings.CACHE_TTL_SESSION,
    )
    return {**data_out, "token": token, "message": "Login successful"}


async def get_me(db: AsyncSession, user_id: int) -> dict | None:
    """Return the user record, cache first.  None when the account is gone."""
    cached = await cache.get(cache.user_key(user_id))
    if cached:
        return cached
    user = await db.get(User, user_id)
    if user is None:
        return None
    data = _user_to_dict(user)
    await cache.cache_user(data)
    return data


async def logout(user_id: int) -> None:
    await cache.delete(cache.session_key(user_id))


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------

async def verify_email(db: AsyncSession, token: str, mailer: Mailer) -> dict:
    result = await db.execute(select(User).where(User.verification_token_hash == sha256_hex(token)))
    user = result.scalar_one_or_none()
    if user is None or ensure_utc(user.verification_token_expires) < utcnow():
        raise InvalidRequest("Invalid or expired verification token", code="INVALID_VERIFICATION_TOKEN")
    if user.is_verified:
        raise InvalidRequest("Email is already verified", code="ALREADY_VERIFIED")

    user.is_verified = True
    user.verification_token_hash = None
    user.verification_token_expires = None
    await db.flush()
    await cache.invalidate_user(user.id, user.email)

    try:
        await mailer.send_welcome(user.email, user.full_name)
    except MailDeliveryError:
        logger.warning("Welcome mail to user %s not delivered", user.id)
    return _user_to_dict(user)


async def resend_verification(db: AsyncSession, user_id: int, mailer: Mailer) -> None:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    if user.is_verified:
        raise InvalidRequest("Email is already verified", code="ALREADY_VERIFIED")

    raw_token, token_hash = generate_verification_token()
    user.verification_token_hash = token_hash
    user.verification_token_expires = utcnow() + timedelta(hours=settings.VERIFICATION_TOKEN_TTL_HOURS)
    await db.flush()
    try:
        await mailer.send_verification(user.email, user.full_name, raw_token)
    except MailDeliveryError as e:
        raise ServiceUnavailable(
            "Failed to send verification email. Please try again later.", code="MAIL_FAILED"
        ) from e


# ---------------------------------------------------------------------------
# Account deletion
# ---------------------------------------------------------------------------

async def delete_account(db: AsyncSession, user_id: int, token: str, client: ServiceClient) -> dict:
    """
    Remove the account and ask every sibling service to drop the user's data.

    Sibling failures are reported in the result but do not stop the local
    delete; the orphans they leave are harmless because nothing can
    authenticate as the user any more.
    """
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")

    outcome = await client.cascade_delete_user(user_id, token)

    email = user.email
    await db.delete(user)
    await db.flush()
    await cache.invalidate_user(user_id, email)
    logger.info("Deleted account %s", user_id)
    return outcome


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

async def forgot_password(db: AsyncSession, email: str, mailer: Mailer) -> None:
    user = await _get_by_email(db, email)
    if user is None:
        raise NotFound("No account found with this email address", code="ACCOUNT_NOT_FOUND")

    otp, otp_hash = generate_otp()
    user.reset_otp_hash = otp_hash
    user.reset_otp_expires = utcnow() + timedelta(minutes=settings.RESET_OTP_TTL_MINUTES)
    await db.flush()

    try:
        await mailer.send_reset_otp(user.email, user.full_name, otp)
    except MailDeliveryError as e:
        user.reset_otp_hash = None
        user.reset_otp_expires = None
        # Committed here so the request rollback cannot restore an earlier OTP.
        await db.commit()
        raise ServiceUnavailable(
            "Failed to send OTP email. Please try again later.", code="MAIL_FAILED"
        ) from e


async def verify_reset_otp(db: AsyncSession, email: str, otp: str) -> None:
    _check_otp_format(otp)
    user = await _get_by_email(db, email)
    if user is None:
        raise NotFound("No account found with this email address", code="ACCOUNT_NOT_FOUND")
    _check_otp(user, otp)


async def reset_password(db: AsyncSession, data: ResetPasswordRequest, mailer: Mailer) -> None:
    if not data.email or not data.otp or not data.new_password or not data.confirm_password:
        raise InvalidRequest("Please provide all required fields", code="MISSING_FIELDS")
    if data.new_password != data.confirm_password:
        raise InvalidRequest("Passwords do not match", code="PASSWORD_MISMATCH")
    if len(data.new_password) < 6:
        raise InvalidRequest("Password must be at least 6 characters long", code="PASSWORD_TOO_SHORT")
    _check_otp_format(data.otp)

    user = await _get_by_email(db, data.email)
    if user is None:
        raise NotFound("No account found with this email address", code="ACCOUNT_NOT_FOUND")
    _check_otp(user, data.otp)

    user.password_hash = hash_password(data.new_password)
    user.reset_otp_hash = None
    user.reset_otp_expires = None
    await db.flush()
    await cache.invalidate_user(user.id, user.email)

    try:
        await mailer.send_password_changed(user.email, user.full_name)
    except MailDeliveryError:
        logger.warning("Password-changed mail to user %s not delivered", user.id)


async def send_login_notice(mailer: Mailer, email: str, name: str, when: str) -> None:
    """Background task: a failed login notice is logged, never surfaced."""
    try:
        await mailer.send_login_notice(email, name, when)
    except MailDeliveryError:
        logger.warning("Login notice to %s not delivered", email)
