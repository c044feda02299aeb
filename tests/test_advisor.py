"""
AI advisor tests: the SSE chat stream, stored history and its expiry,
one-shot analysis endpoints and prompt assembly.

The model is the scripted FakeLLM from conftest; prompts it receives are
recorded so their content can be asserted.
"""
import json
from datetime import timedelta

import pytest
from httpx import AsyncClient

from campusnet.models import ChatMessage, ChatSession
from campusnet.services import advisor_service
from campusnet.timeutils import utcnow


def _frames(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.split("\n\n") if line.startswith("data: ")]


async def _chat(client: AsyncClient, headers: dict, message="How do I get noticed?", **extra):
    return await client.post("/api/ai/chat", json={"message": message, **extra}, headers=headers)


# ---------------------------------------------------------------------------
# Chat stream
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chat_streams_chunks_then_done(async_client: AsyncClient, auth_headers, llm):
    resp = await _chat(async_client, auth_headers(1))
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")

    frames = _frames(resp.text)
    assert frames[:2] == [{"chunk": "Hello", "done": False}, {"chunk": ", world", "done": False}]
    assert frames[-1] == {"chunk": "", "done": True, "full_text": "Hello, world"}
    assert "User: How do I get noticed?" in llm.prompts[0]


@pytest.mark.asyncio
async def test_chat_is_stored_and_replayed(async_client: AsyncClient, auth_headers, llm):
    """Both turns are stored; the next chat without client history uses them."""
    headers = auth_headers(1)
    await _chat(async_client, headers, message="first question")

    history = (await async_client.get("/api/ai/history", headers=headers)).json()
    assert [(m["role"], m["content"]) for m in history["messages"]] == [
        ("user", "first question"), ("assistant", "Hello, world"),
    ]
    assert history["messages"][0]["context"] == "general"
    assert history["last_activity"]

    await _chat(async_client, headers, message="second question")
    assert "Conversation History:\nUser: first question\nAssistant: Hello, world\n" in llm.prompts[1]


@pytest.mark.asyncio
async def test_client_history_overrides_stored(async_client: AsyncClient, auth_headers, llm):
    headers = auth_headers(1)
    await _chat(async_client, headers, message="stored question")
    await _chat(async_client, headers, message="next", conversation_history=[
        {"role": "user", "content": "client-side turn"},
    ])
    assert "client-side turn" in llm.prompts[1]
    assert "stored question" not in llm.prompts[1]


@pytest.mark.asyncio
async def test_chat_context_and_profile_shape_prompt(async_client: AsyncClient, auth_headers, llm):
    await _chat(async_client, auth_headers(1), context="career", profile_data={
        "firstName": "Asha", "lastName": "Rao", "headline": "Aspiring data engineer", "skills": ["sql", "python"],
    })
    prompt = llm.prompts[0]
    assert prompt.startswith(advisor_service.SYSTEM_PROMPTS["career"])
    assert "Name: Asha Rao" in prompt
    assert "Headline: Aspiring data engineer" in prompt
    assert "Skills: sql, python" in prompt


@pytest.mark.asyncio
async def test_chat_error_frame_and_nothing_stored(async_client: AsyncClient, auth_headers, llm):
    """A model failure mid-stream ends with an error frame and stores no turns."""
    llm.fail_after = 1
    headers = auth_headers(1)
    frames = _frames((await _chat(async_client, headers)).text)
    assert frames[0] == {"chunk": "Hello", "done": False}
    assert frames[-1] == {"error": "stream interrupted", "done": True}
    assert (await async_client.get("/api/ai/history", headers=headers)).json() == {"messages": []}


@pytest.mark.asyncio
async def test_chat_unconfigured(async_client: AsyncClient, auth_headers, llm):
    llm.configured = False
    resp = await _chat(async_client, auth_headers(1))
    assert resp.status_code == 503
    assert resp.json()["code"] == "LLM_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_chat_validation(async_client: AsyncClient, auth_headers):
    assert (await _chat(async_client, auth_headers(1), message="")).status_code == 422
    assert (await _chat(async_client, auth_headers(1), context="gossip")).status_code == 422


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_history(async_client: AsyncClient, auth_headers):
    headers = auth_headers(1)
    await _chat(async_client, headers)
    resp = await async_client.delete("/api/ai/history", headers=headers)
    assert resp.json() == {"message": "Chat history deleted"}
    assert (await async_client.get("/api/ai/history", headers=headers)).json() == {"messages": []}


@pytest.mark.asyncio
async def test_expired_session_is_dropped(async_client: AsyncClient, auth_headers, db_session):
    """A session older than the TTL is removed on the next read."""
    old = utcnow() - timedelta(hours=25)
    session = ChatSession(user_id=1, created_at=old, last_activity=old)
    db_session.add(session)
    await db_session.flush()
    db_session.add(ChatMessage(session_id=session.id, role="user", content="stale", created_at=old))
    await db_session.commit()

    assert (await async_client.get("/api/ai/history", headers=auth_headers(1))).json() == {"messages": []}


@pytest.mark.asyncio
async def test_internal_delete_user_chats(async_client: AsyncClient, auth_headers, internal_headers):
    await _chat(async_client, auth_headers(1))
    resp = await async_client.delete("/api/ai/user/1", headers=internal_headers)
    assert resp.json()["deleted"] == 1
    assert (await async_client.delete("/api/ai/user/1")).status_code == 403


# ---------------------------------------------------------------------------
# One-shot endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_analyze_profile(async_client: AsyncClient, auth_headers, llm):
    resp = await async_client.post("/api/ai/analyze-profile", headers=auth_headers(1), json={"profile_data": {
        "first_name": "Asha", "last_name": "Rao",
        "experience": [{"title": "Intern", "company": "Acme", "description": "Built dashboards"}],
    }})
    assert resp.status_code == 200
    assert resp.json()["analysis"] == "Hello, world"
    assert resp.json()["timestamp"]
    assert "1. Intern at Acme" in llm.prompts[0]
    assert "Description: Built dashboards" in llm.prompts[0]
    assert "Overall profile score" in llm.prompts[0]


@pytest.mark.asyncio
async def test_content_ideas(async_client: AsyncClient, auth_headers, llm):
    resp = await async_client.post("/api/ai/content-ideas", headers=auth_headers(1), json={
        "industry": "FinTech", "interests": ["payments", "risk"],
    })
    assert resp.status_code == 200
    assert resp.json()["ideas"] == "Hello, world"
    assert "Industry: FinTech" in llm.prompts[0]
    assert "Interests: payments, risk" in llm.prompts[0]
    assert "Recent topics" not in llm.prompts[0]


@pytest.mark.asyncio
async def test_one_shot_model_failure(async_client: AsyncClient, auth_headers, llm):
    llm.fail_after = 0
    resp = await async_client.post("/api/ai/content-ideas", headers=auth_headers(1), json={})
    assert resp.status_code == 503
    assert resp.json()["code"] == "LLM_FAILED"
    assert resp.json()["details"] == "model unavailable"


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------

def test_build_chat_prompt_unknown_context_uses_general():
    prompt = advisor_service.build_chat_prompt("hi", context="nonsense")
    assert prompt.startswith(advisor_service.SYSTEM_PROMPTS["general"])
    assert prompt.endswith("User: hi\nAssistant:")


def test_profile_lines_location_dict():
    lines = advisor_service.profile_lines({
        "first_name": "Asha", "last_name": "Rao", "location": {"city": "Noida", "country": "India"},
    })
    assert lines == ["Name: Asha Rao", "Location: Noida, India"]


def test_sse_event_format():
    assert advisor_service.sse_event({"chunk": "x", "done": False}) == 'data: {"chunk": "x", "done": false}\n\n'
