"""
Auth endpoint tests: registration, login, token checks, email
verification, password reset and account deletion.

Mail is captured by the in-memory outbox fixture; verification tokens and
reset OTPs are read back out of the captured bodies.
"""
import re

import pytest
from httpx import AsyncClient

from campusnet.mailer import MailDeliveryError, Mailer, get_mailer
from campusnet.main import app


class FailingMailer(Mailer):
    async def send(self, to: str, subject: str, body: str) -> None:
        raise MailDeliveryError("relay down")


async def _register(client: AsyncClient, username="asha", email="asha@campus.test", password="secret123", **extra):
    return await client.post("/api/auth/register", json={
        "full_name": "Asha Rao",
        "username": username,
        "email": email,
        "password": password,
        **extra,
    })


def _verification_token(outbox) -> str:
    body = next(m.body for m in reversed(outbox) if m.subject == "Verify your CampusNet account")
    return re.search(r"/verify-email/([0-9a-f]+)", body).group(1)


def _reset_otp(outbox) -> str:
    body = next(m.body for m in reversed(outbox) if "reset code" in m.subject)
    return re.search(r"reset code is (\d{6})", body).group(1)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_returns_token_and_unverified_user(async_client: AsyncClient, outbox):
    """Registration returns 201 with a token, an unverified user and one verification mail."""
    resp = await _register(async_client, username="Asha_R")
    assert resp.status_code == 201
    body = resp.json()
    assert body["username"] == "asha_r"
    assert body["email"] == "asha@campus.test"
    assert body["role"] == "student"
    assert body["is_verified"] is False
    assert body["token"]
    assert "password_hash" not in body
    assert len(outbox) == 1
    assert outbox[0].to == "asha@campus.test"


@pytest.mark.asyncio
async def test_register_duplicate_email(async_client: AsyncClient):
    """A second account with the same email (any case) is rejected with 409."""
    await _register(async_client)
    resp = await _register(async_client, username="other", email="ASHA@campus.test")
    assert resp.status_code == 409
    assert resp.json()["code"] == "EMAIL_TAKEN"


@pytest.mark.asyncio
async def test_register_duplicate_username(async_client: AsyncClient):
    """Usernames are unique regardless of case."""
    await _register(async_client)
    resp = await _register(async_client, username="ASHA", email="second@campus.test")
    assert resp.status_code == 409
    assert resp.json()["code"] == "USERNAME_TAKEN"


@pytest.mark.asyncio
async def test_register_validation(async_client: AsyncClient):
    """Short passwords, bad emails and unknown roles fail validation with 422."""
    assert (await _register(async_client, password="123")).status_code == 422
    assert (await _register(async_client, email="not-an-email")).status_code == 422
    assert (await _register(async_client, role="janitor")).status_code == 422


@pytest.mark.asyncio
async def test_register_succeeds_when_mail_fails(async_client: AsyncClient):
    """A mail relay outage does not undo registration; the message says so."""
    app.dependency_overrides[get_mailer] = lambda: FailingMailer("memory")
    resp = await _register(async_client)
    assert resp.status_code == 201
    assert "could not be sent" in resp.json()["message"]


# ---------------------------------------------------------------------------
# Login and token
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_login_success_sends_notice(async_client: AsyncClient, outbox):
    """Valid credentials return a token and queue a sign-in notice mail."""
    await _register(async_client)
    resp = await async_client.post("/api/auth/login", json={"email": "Asha@Campus.test", "password": "secret123"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["token"]
    assert body["last_login"] is not None
    assert any(m.subject.startswith("New sign-in") for m in outbox)


@pytest.mark.asyncio
async def test_login_unknown_email(async_client: AsyncClient):
    """Logging in with an unregistered email returns 404."""
    resp = await async_client.post("/api/auth/login", json={"email": "ghost@campus.test", "password": "x"})
    assert resp.status_code == 404
    assert resp.json()["code"] == "ACCOUNT_NOT_FOUND"


@pytest.mark.asyncio
async def test_login_wrong_password(async_client: AsyncClient):
    """A wrong password returns 401."""
    await _register(async_client)
    resp = await async_client.post("/api/auth/login", json={"email": "asha@campus.test", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INCORRECT_PASSWORD"


@pytest.mark.asyncio
async def test_me_and_verify(async_client: AsyncClient):
    """The token from registration works for /me and /verify."""
    token = (await _register(async_client)).json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    me = await async_client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["username"] == "asha"

    verify = await async_client.get("/api/auth/verify", headers=headers)
    assert verify.status_code == 200
    assert verify.json()["email"] == "asha@campus.test"
    assert verify.json()["role"] == "student"


@pytest.mark.asyncio
async def test_missing_and_invalid_token(async_client: AsyncClient):
    """No token and a garbage token both return 401 with distinct codes."""
    resp = await async_client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["code"] == "NO_TOKEN"

    resp = await async_client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_logout(async_client: AsyncClient):
    token = (await _register(async_client)).json()["token"]
    resp = await async_client.post("/api/auth/logout", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_verify_email_flow(async_client: AsyncClient, outbox):
    """The mailed token verifies the account once; reuse is rejected."""
    await _register(async_client)
    token = _verification_token(outbox)

    resp = await async_client.get(f"/api/auth/verify-email/{token}")
    assert resp.status_code == 200
    assert resp.json()["user"]["is_verified"] is True
    assert any(m.subject == "Welcome to CampusNet" for m in outbox)

    again = await async_client.get(f"/api/auth/verify-email/{token}")
    assert again.status_code == 400
    assert again.json()["code"] == "INVALID_VERIFICATION_TOKEN"


@pytest.mark.asyncio
async def test_verify_email_unknown_token(async_client: AsyncClient):
    resp = await async_client.get("/api/auth/verify-email/deadbeef")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_resend_verification(async_client: AsyncClient, outbox):
    """Resending issues a fresh token; the old one stops working."""
    token = (await _register(async_client)).json()["token"]
    old = _verification_token(outbox)

    resp = await async_client.post(
        "/api/auth/resend-verification", headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 200
    new = _verification_token(outbox)
    assert new != old

    assert (await async_client.get(f"/api/auth/verify-email/{old}")).status_code == 400
    assert (await async_client.get(f"/api/auth/verify-email/{new}")).status_code == 200

    resp = await async_client.post(
        "/api/auth/resend-verification", headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "ALREADY_VERIFIED"


@pytest.mark.asyncio
async def test_resend_verification_mail_failure(async_client: AsyncClient):
    """A failed resend surfaces as 503."""
    token = (await _register(async_client)).json()["token"]
    app.dependency_overrides[get_mailer] = lambda: FailingMailer("memory")
    resp = await async_client.post(
        "/api/auth/resend-verification", headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 503
    assert resp.json()["code"] == "MAIL_FAILED"


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_password_reset_flow(async_client: AsyncClient, outbox):
    """Forgot, verify OTP, reset, then log in with the new password."""
    await _register(async_client)
    resp = await async_client.post("/api/auth/forgot-password", json={"email": "asha@campus.test"})
    assert resp.status_code == 200
    otp = _reset_otp(outbox)

    resp = await async_client.post("/api/auth/verify-reset-otp", json={"email": "asha@campus.test", "otp": otp})
    assert resp.status_code == 200

    resp = await async_client.post("/api/auth/reset-password", json={
        "email": "asha@campus.test", "otp": otp, "new_password": "newpass1", "confirm_password": "newpass1",
    })
    assert resp.status_code == 200
    assert any("password was changed" in m.subject for m in outbox)

    old = await async_client.post("/api/auth/login", json={"email": "asha@campus.test", "password": "secret123"})
    assert old.status_code == 401
    new = await async_client.post("/api/auth/login", json={"email": "asha@campus.test", "password": "newpass1"})
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_reset_otp_is_single_use(async_client: AsyncClient, outbox):
    """After a successful reset the same OTP is no longer accepted."""
    await _register(async_client)
    await async_client.post("/api/auth/forgot-password", json={"email": "asha@campus.test"})
    otp = _reset_otp(outbox)
    payload = {"email": "asha@campus.test", "otp": otp, "new_password": "newpass1", "confirm_password": "newpass1"}
    assert (await async_client.post("/api/auth/reset-password", json=payload)).status_code == 200

    again = await async_client.post("/api/auth/reset-password", json=payload)
    assert again.status_code == 400
    assert again.json()["code"] == "OTP_NOT_REQUESTED"


@pytest.mark.asyncio
async def test_forgot_password_unknown_email(async_client: AsyncClient):
    resp = await async_client.post("/api/auth/forgot-password", json={"email": "ghost@campus.test"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_forgot_password_mail_failure(async_client: AsyncClient):
    """When the OTP mail cannot be sent the caller gets 503."""
    await _register(async_client)
    app.dependency_overrides[get_mailer] = lambda: FailingMailer("memory")
    resp = await async_client.post("/api/auth/forgot-password", json={"email": "asha@campus.test"})
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_failed_forgot_password_voids_earlier_otp(async_client: AsyncClient, outbox):
    """An OTP from an earlier request stops working once a later OTP mail fails."""
    await _register(async_client)
    await async_client.post("/api/auth/forgot-password", json={"email": "asha@campus.test"})
    otp = _reset_otp(outbox)

    app.dependency_overrides[get_mailer] = lambda: FailingMailer("memory")
    resp = await async_client.post("/api/auth/forgot-password", json={"email": "asha@campus.test"})
    assert resp.status_code == 503

    resp = await async_client.post("/api/auth/verify-reset-otp", json={"email": "asha@campus.test", "otp": otp})
    assert resp.status_code == 400
    assert resp.json()["code"] == "OTP_NOT_REQUESTED"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload, code", [
    ({"otp": "123456", "new_password": "abcdef", "confirm_password": "abcdeg"}, "PASSWORD_MISMATCH"),
    ({"otp": "123456", "new_password": "abc", "confirm_password": "abc"}, "PASSWORD_TOO_SHORT"),
    ({"otp": "12ab56", "new_password": "abcdef", "confirm_password": "abcdef"}, "OTP_FORMAT"),
    ({"otp": "", "new_password": "abcdef", "confirm_password": "abcdef"}, "MISSING_FIELDS"),
])
async def test_reset_password_validation(async_client: AsyncClient, payload, code):
    """Field-level reset failures are reported as 400 with a specific code."""
    await _register(async_client)
    resp = await async_client.post("/api/auth/reset-password", json={"email": "asha@campus.test", **payload})
    assert resp.status_code == 400
    assert resp.json()["code"] == code


@pytest.mark.asyncio
async def test_wrong_otp(async_client: AsyncClient, outbox):
    await _register(async_client)
    await async_client.post("/api/auth/forgot-password", json={"email": "asha@campus.test"})
    otp = _reset_otp(outbox)
    wrong = "111111" if otp != "111111" else "222222"
    resp = await async_client.post("/api/auth/verify-reset-otp", json={"email": "asha@campus.test", "otp": wrong})
    assert resp.status_code == 400
    assert resp.json()["code"] == "OTP_INVALID"


# ---------------------------------------------------------------------------
# Account deletion
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_account_cascades(async_client: AsyncClient, siblings):
    """Deleting an account calls every sibling and removes the user."""
    token = (await _register(async_client)).json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    resp = await async_client.delete("/api/auth/delete-account", headers=headers)
    assert resp.status_code == 200
    services = resp.json()["services"]
    assert set(services) == {"profile", "network", "engagement", "feed", "messages", "notifications", "ai"}
    assert all(services.values())

    profile_call = siblings.calls("DELETE", "/api/users/profile")[0]
    assert profile_call.headers["Authorization"] == f"Bearer {token}"
    internal = [r for r in siblings.requests if r.method == "DELETE" and "/user/" in r.url.path]
    assert len(internal) == 6

    assert (await async_client.get("/api/auth/me", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_delete_account_reports_sibling_failures(async_client: AsyncClient, siblings):
    """Sibling outages are reported per service but the account is still removed."""
    token = (await _register(async_client)).json()["token"]
    siblings.down = True
    resp = await async_client.delete("/api/auth/delete-account", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert not any(resp.json()["services"].values())
    login = await async_client.post("/api/auth/login", json={"email": "asha@campus.test", "password": "secret123"})
    assert login.status_code == 404
