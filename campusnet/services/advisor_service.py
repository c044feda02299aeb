"""
AI advisor service: prompt assembly, chat sessions and the SSE chat stream.

Each user has at most one chat session.  A session lives for
``CHAT_SESSION_TTL_HOURS`` from its creation; an expired session is
deleted the next time it is looked up, so history never outlives the TTL
even without a sweeper.
"""
import json
import logging
from datetime import timedelta
from typing import AsyncIterator

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campusnet.config import settings
from campusnet.gemini import GeminiClient, LLMError
from campusnet.models import ChatMessage, ChatSession
from campusnet.schemas import ChatRequest
from campusnet.timeutils import ensure_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

SYSTEM_PROMPTS = {
    "general": (
        "You are an AI advisor for CampusNet, a professional networking platform similar to LinkedIn.\n"
        "Your role is to help users:\n"
        "- Improve their profiles (headline, summary, experience descriptions)\n"
        "- Increase their reach and engagement on the platform\n"
        "- Follow best practices for professional networking\n"
        "- Get career guidance and professional development advice\n"
        "- Learn platform features and etiquette\n\n"
        "Always be helpful, concise, and actionable. "
        "Format your responses clearly with bullet points when appropriate."
    ),
    "profile": (
        "You are a profile optimization expert for CampusNet. Analyze user profiles and provide "
        "specific, actionable recommendations to:\n"
        "- Improve profile completeness and attractiveness\n"
        "- Enhance professional headline and summary\n"
        "- Better showcase experience and skills\n"
        "- Increase profile views and connection requests\n"
        "- Stand out to recruiters and potential connections\n\n"
        "Be specific and prioritize the most impactful changes first."
    ),
    "content": (
        "You are a content strategy advisor for CampusNet. Help users:\n"
        "- Create engaging posts that increase visibility\n"
        "- Build thought leadership in their field\n"
        "- Improve engagement (likes, comments, shares)\n"
        "- Develop a consistent posting strategy\n"
        "- Write compelling headlines and hooks\n\n"
        "Provide specific examples and templates when possible."
    ),
    "career": (
        "You are a career advisor helping professionals on CampusNet. Provide guidance on:\n"
        "- Career transitions and progression\n"
        "- Skill development and learning paths\n"
        "- Industry trends and opportunities\n"
        "- Professional branding and positioning\n"
        "- Networking strategies for career growth\n\n"
        "Be empathetic, realistic, and provide concrete next steps."
    ),
}

ANALYSIS_INSTRUCTIONS = (
    "Provide:\n"
    "1. Overall profile score (1-10)\n"
    "2. Top 3 strengths\n"
    "3. Top 5 improvements (prioritized)\n"
    "4. Specific suggestions for each section\n"
    "5. Quick wins (changes that take <5 minutes)"
)

CONTENT_IDEAS_INSTRUCTIONS = (
    "For each idea, provide:\n"
    "- A compelling headline\n"
    "- Key points to cover\n"
    "- Why it will engage the audience\n"
    "- Best time to post"
)


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------

def _location_text(location) -> str:
    if isinstance(location, dict):
        return ", ".join(str(v) for v in (location.get("city"), location.get("state"), location.get("country")) if v)
    return str(location or "")


def profile_lines(profile: dict, description_prefix: str = "") -> list[str]:
    """
    Render a profile for a prompt.  Accepts the profile service's field
    names as well as the camelCase names older clients send.
    """
    first = profile.get("first_name") or profile.get("firstName") or ""
    last = profile.get("last_name") or profile.get("lastName") or ""
    headline = profile.get("title") or profile.get("headline")
    about = profile.get("bio") or profile.get("about")
    location = _location_text(profile.get("location"))

    lines = [f"Name: {first} {last}".rstrip()]
    if headline:
        lines.append(f"Headline: {headline}")
    if about:
        lines.append(f"About: {about}")
    if location:
        lines.append(f"Location: {location}")

    experience = profile.get("experience") or []
    if experience:
        lines.append("")
        lines.append("Experience:")
        for i, exp in enumerate(experience, start=1):
            lines.append(f"{i}. {exp.get('title', '')} at {exp.get('company', '')}")
            if exp.get("description"):
                lines.append(f"   {description_prefix}{exp['description']}")

    skills = profile.get("skills") or []
    if skills:
        lines.append("")
        lines.append(f"Skills: {', '.join(str(s) for s in skills)}")
    return lines


def build_chat_prompt(
    message: str,
    context: str = "general",
    history: list[dict] | None = None,
    profile: dict | None = None,
) -> str:
    prompt = SYSTEM_PROMPTS.get(context, SYSTEM_PROMPTS["general"]) + "\n\n"
    if profile:
        prompt += "User's Profile Data:\n" + "\n".join(profile_lines(profile)) + "\n\n"
    if history:
        prompt += "Conversation History:\n"
        for turn in history:
            speaker = "User" if turn["role"] == "user" else "Assistant"
            prompt += f"{speaker}: {turn['content']}\n"
        prompt += "\n"
    prompt += f"User: {message}\nAssistant:"
    return prompt


def build_analysis_prompt(profile: dict) -> str:
    return (
        SYSTEM_PROMPTS["profile"] + "\n\n"
        + "Analyze this profile and provide a detailed assessment with specific recommendations:\n\n"
        + "\n".join(profile_lines(profile, description_prefix="Description: "))
        + "\n\n" + ANALYSIS_INSTRUCTIONS
    )


def build_content_ideas_prompt(
    industry: str | None = None,
    interests: list[str] | None = None,
    recent_topics: list[str] | None = None,
) -> str:
    prompt = SYSTEM_PROMPTS["content"] + "\n\n"
    prompt += "Generate 5 engaging post ideas for a professional in:\n"
    if industry:
        prompt += f"Industry: {industry}\n"
    if interests:
        prompt += f"Interests: {', '.join(interests)}\n"
    if recent_topics:
        prompt += f"Recent topics: {', '.join(recent_topics)}\n"
    return prompt + "\n" + CONTENT_IDEAS_INSTRUCTIONS


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def _expired(session: ChatSession) -> bool:
    ttl = timedelta(hours=settings.CHAT_SESSION_TTL_HOURS)
    return ensure_utc(session.created_at) + ttl <= utcnow()


async def _delete_sessions(db: AsyncSession, session_ids: list[int]) -> None:
    if not session_ids:
        return
    await db.execute(delete(ChatMessage).where(ChatMessage.session_id.in_(session_ids)))
    await db.execute(delete(ChatSession).where(ChatSession.id.in_(session_ids)))


async def get_session(db: AsyncSession, user_id: int) -> ChatSession | None:
    """The user's live session, or None.  An expired session is removed here."""
    result = await db.execute(select(ChatSession).where(ChatSession.user_id == user_id))
    session = result.scalar_one_or_none()
    if session is not None and _expired(session):
        await _delete_sessions(db, [session.id])
        return None
    return session


async def _get_or_create_session(db: AsyncSession, user_id: int) -> ChatSession:
    session = await get_session(db, user_id)
    if session is None:
        session = ChatSession(user_id=user_id)
        db.add(session)
        await db.flush()
    return session


async def recent_turns(db: AsyncSession, session: ChatSession, limit: int | None = None) -> list[dict]:
    """The last *limit* stored turns of *session*, oldest first."""
    limit = limit or settings.ADVISOR_HISTORY_LIMIT
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session.id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
    )
    rows = list(result.scalars().all())
    rows.reverse()
    return [{"role": m.role, "content": m.content} for m in rows]


async def get_history(db: AsyncSession, user_id: int) -> dict:
    session = await get_session(db, user_id)
    if session is None:
        return {"messages": []}
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session.id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
    )
    return {
        "messages": [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "context": m.context,
                "timestamp": isoformat(m.created_at),
            }
            for m in result.scalars().all()
        ],
        "last_activity": isoformat(session.last_activity),
    }


async def delete_history(db: AsyncSession, user_id: int) -> int:
    """Delete every session of *user_id*; returns how many were removed."""
    result = await db.execute(select(ChatSession.id).where(ChatSession.user_id == user_id))
    session_ids = list(result.scalars().all())
    await _delete_sessions(db, session_ids)
    return len(session_ids)


async def record_exchange(db: AsyncSession, user_id: int, context: str, question: str, answer: str) -> None:
    session = await _get_or_create_session(db, user_id)
    now = utcnow()
    db.add(ChatMessage(session_id=session.id, role="user", content=question, context=context, created_at=now))
    db.add(ChatMessage(session_id=session.id, role="assistant", content=answer, context=context, created_at=now))
    session.last_activity = now
    await db.flush()


# ---------------------------------------------------------------------------
# Chat stream
# ---------------------------------------------------------------------------

def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def stream_chat(
    session_factory: async_sessionmaker,
    llm: GeminiClient,
    user_id: int,
    request: ChatRequest,
) -> AsyncIterator[str]:
    """
    Yield the SSE frames of one chat exchange.  Both turns are stored only
    once the model has finished answering.
    """
    if request.conversation_history:
        history = [turn.model_dump() for turn in request.conversation_history]
    else:
        async with session_factory() as db:
            session = await get_session(db, user_id)
            history = await recent_turns(db, session) if session else []
            await db.commit()

    prompt = build_chat_prompt(request.message, request.context, history, request.profile_data)
    chunks: list[str] = []
    try:
        async for chunk in llm.stream(prompt):
            chunks.append(chunk)
            yield sse_event({"chunk": chunk, "done": False})
    except LLMError as e:
        yield sse_event({"error": str(e) or "Failed to get AI response", "done": True})
        return

    full_text = "".join(chunks)
    async with session_factory() as db:
        await record_exchange(db, user_id, request.context, request.message, full_text)
        await db.commit()
    yield sse_event({"chunk": "", "done": True, "full_text": full_text})
