from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campusnet.database import get_db, get_sessionmaker
from campusnet.dependencies import CurrentUser, get_current_user, require_internal
from campusnet.exceptions import ServiceUnavailable
from campusnet.gemini import GeminiClient, LLMError, get_llm
from campusnet.schemas import AnalyzeProfileRequest, ChatRequest, ContentIdeasRequest
from campusnet.services import advisor_service
from campusnet.timeutils import isoformat, utcnow

router = APIRouter(prefix="/api/ai", tags=["advisor"])


async def configured_llm(llm: GeminiClient = Depends(get_llm)) -> GeminiClient:
    if not llm.configured:
        raise ServiceUnavailable("AI advisor is not configured", code="LLM_NOT_CONFIGURED")
    return llm


@router.post("/chat")
async def chat(
    data: ChatRequest,
    user: CurrentUser = Depends(get_current_user),
    llm: GeminiClient = Depends(configured_llm),
    session_factory: async_sessionmaker = Depends(get_sessionmaker),
):
    return StreamingResponse(
        advisor_service.stream_chat(session_factory, llm, user.id, data),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/history")
async def get_history(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await advisor_service.get_history(db, user.id)


@router.delete("/history")
async def delete_history(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    await advisor_service.delete_history(db, user.id)
    return {"message": "Chat history deleted"}


@router.delete("/user/{user_id}", dependencies=[Depends(require_internal)])
async def delete_user_chats(user_id: int, db: AsyncSession = Depends(get_db)):
    deleted = await advisor_service.delete_history(db, user_id)
    return {"message": f"All chat history deleted for user {user_id}", "deleted": deleted}


@router.post("/analyze-profile")
async def analyze_profile(
    data: AnalyzeProfileRequest,
    user: CurrentUser = Depends(get_current_user),
    llm: GeminiClient = Depends(configured_llm),
):
    try:
        analysis = await llm.generate(advisor_service.build_analysis_prompt(data.profile_data))
    except LLMError as e:
        raise ServiceUnavailable("Failed to analyze profile", code="LLM_FAILED", details=str(e))
    return {"analysis": analysis, "timestamp": isoformat(utcnow())}


@router.post("/content-ideas")
async def content_ideas(
    data: ContentIdeasRequest,
    user: CurrentUser = Depends(get_current_user),
    llm: GeminiClient = Depends(configured_llm),
):
    prompt = advisor_service.build_content_ideas_prompt(data.industry, data.interests, data.recent_topics)
    try:
        ideas = await llm.generate(prompt)
    except LLMError as e:
        raise ServiceUnavailable("Failed to generate content ideas", code="LLM_FAILED", details=str(e))
    return {"ideas": ideas, "timestamp": isoformat(utcnow())}
