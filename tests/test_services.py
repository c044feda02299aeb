"""
Direct tests of helpers that sit below the routers: profile scoring, date
arithmetic, token and OTP generation, the sibling-service client and the
cache's no-Redis mode.
"""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from campusnet.cache import CacheManager
from campusnet.clients import CASCADE_TARGETS, ServiceClient, display_name, truncate
from campusnet.security import (
    TokenError,
    create_access_token,
    decode_access_token,
    generate_otp,
    generate_verification_token,
    hash_password,
    sha256_hex,
    verify_password,
)
from campusnet.services.network_service import match_score
from campusnet.timeutils import ensure_utc, subtract_months


# ---------------------------------------------------------------------------
# network_service.match_score
# ---------------------------------------------------------------------------

def test_match_score_weights():
    me = {
        "role": "student",
        "student_info": {"department": "CSE", "batch": "2025"},
        "skills": ["python", "sql", "go"],
        "interests": ["ai", "music"],
    }
    candidate = {
        "role": "student",
        "student_info": {"department": "CSE", "batch": "2025"},
        "skills": ["python", "sql", "rust"],
        "interests": ["ai"],
    }
    # department 50 + batch 30 + role 20 + two skills + one interest
    assert match_score(candidate, me) == 50 + 30 + 20 + 2 * 5 + 3


def test_match_score_department_uses_first_shared_block():
    """Only the first role block both sides fill in is compared."""
    me = {"student_info": {"department": "ECE"}, "professor_info": {"department": "CSE"}}
    candidate = {"student_info": {"department": "MECH"}, "professor_info": {"department": "CSE"}}
    assert match_score(candidate, me) == 0

    me = {"professor_info": {"department": "CSE"}}
    assert match_score(candidate, me) == 50


def test_match_score_alumni_and_empty():
    me = {"role": "alumni", "alumni_info": {"graduation_year": 2020}}
    candidate = {"role": "alumni", "alumni_info": {"graduation_year": 2020}}
    assert match_score(candidate, me) == 30 + 20
    assert match_score(candidate, {}) == 0


# ---------------------------------------------------------------------------
# timeutils
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("start, months, expected", [
    (datetime(2024, 8, 31), 6, datetime(2024, 2, 29)),
    (datetime(2023, 8, 31), 6, datetime(2023, 2, 28)),
    (datetime(2024, 3, 15), 6, datetime(2023, 9, 15)),
    (datetime(2024, 1, 10), 1, datetime(2023, 12, 10)),
    (datetime(2100, 8, 30), 6, datetime(2100, 2, 28)),
])
def test_subtract_months(start, months, expected):
    assert subtract_months(start, months) == expected


def test_ensure_utc():
    naive = datetime(2024, 1, 1, 12)
    assert ensure_utc(naive).tzinfo == timezone.utc
    assert ensure_utc(None) is None


# ---------------------------------------------------------------------------
# security
# ---------------------------------------------------------------------------

def test_access_token_round_trip():
    token = create_access_token(user_id=7, email="a@campus.test", role="professor")
    claims = decode_access_token(token)
    assert claims["sub"] == "7"
    assert claims["email"] == "a@campus.test"
    assert claims["role"] == "professor"


def test_expired_and_tampered_tokens():
    expired = create_access_token(user_id=7, email="a@campus.test", role="student", ttl=timedelta(seconds=-1))
    with pytest.raises(TokenError):
        decode_access_token(expired)
    with pytest.raises(TokenError):
        decode_access_token("not-a-token")


def test_password_hashing():
    stored = hash_password("s3cret-pass")
    assert stored != "s3cret-pass"
    assert verify_password("s3cret-pass", stored)
    assert not verify_password("wrong", stored)


def test_verification_token_and_otp_digests():
    raw, digest = generate_verification_token()
    assert len(raw) == 64
    assert digest == sha256_hex(raw) != raw

    otp, otp_digest = generate_otp()
    assert len(otp) == 6 and otp.isdigit()
    assert otp_digest == sha256_hex(otp)


# ---------------------------------------------------------------------------
# clients
# ---------------------------------------------------------------------------

def test_display_name_and_truncate():
    assert display_name(None) == "Someone"
    assert display_name({"first_name": "", "last_name": ""}) == "Someone"
    assert display_name({"first_name": "Asha", "last_name": "Rao"}) == "Asha Rao"
    assert truncate("x" * 60) == "x" * 50 + "..."
    assert truncate("short") == "short"
    assert truncate(None) == ""


def _recording_client(handler):
    requests = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return ServiceClient(httpx.AsyncClient(transport=httpx.MockTransport(record))), requests


@pytest.mark.asyncio
async def test_notify_fills_actor_and_skips_self():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"first_name": "Bela", "last_name": "Das", "avatar": "b.png"})
        return httpx.Response(201, json={"id": 1})

    client, requests = _recording_client(handler)
    try:
        assert await client.notify(user_id=1, type="LIKE", content="{actor} liked your post", actor_id=1) is False
        assert requests == []

        assert await client.notify(user_id=1, type="LIKE", content="{actor} liked your post", actor_id=2, related_id=9)
        posted = requests[-1]
        assert posted.headers["X-API-Key"]
        payload = json.loads(posted.content)
        assert payload["content"] == "Bela Das liked your post"
        assert payload["related_user_id"] == 2
        assert payload["related_user_avatar"] == "b.png"
        assert payload["related_id"] == "9"
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_sibling_failures_are_best_effort():
    client, _ = _recording_client(lambda request: httpx.Response(503))
    try:
        assert await client.get_profile(1) is None
        assert await client.get_likes(1) == []
        assert await client.notify(user_id=1, type="LIKE", content="{actor} liked", actor_id=2) is False
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_cascade_delete_reports_each_service():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/api/messages"):
            return httpx.Response(500)
        return httpx.Response(200, json={"deleted": 1})

    client, requests = _recording_client(handler)
    try:
        outcome = await client.cascade_delete_user(5, token="tok")
    finally:
        await client.aclose()

    assert set(outcome) == {"profile", *CASCADE_TARGETS}
    assert outcome["messages"] is False
    assert all(ok for name, ok in outcome.items() if name != "messages")
    profile_call = next(r for r in requests if r.url.path == "/api/users/profile")
    assert profile_call.headers["Authorization"] == "Bearer tok"
    assert any(r.url.path == "/api/network/user/5" for r in requests)


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cache_without_redis_is_a_no_op():
    manager = CacheManager()
    assert manager.available is False
    await manager.set("k", {"v": 1})
    assert await manager.get("k") is None
    await manager.delete("k")
    await manager.delete_pattern("news:*")
    assert manager.stats["connected"] is False
