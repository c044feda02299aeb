from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.cache import cache
from campusnet.database import get_db
from campusnet.dependencies import PaginationParams, require_internal
from campusnet.schemas import PaginatedResponse, ScrapeResult
from campusnet.services import news_service
from campusnet.services.scraper import NewsScraper

router = APIRouter(prefix="/api/news", tags=["news"])


def get_news_scraper() -> NewsScraper:
    return NewsScraper()


@router.get("", response_model=PaginatedResponse)
async def list_news(
    category: str | None = Query(None, description="Category name, or \"all\"."),
    sort: str = Query("-published_date"),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await news_service.list_news(db, category, pagination.page, pagination.page_size, sort)


@router.get("/latest")
async def latest_news(db: AsyncSession = Depends(get_db)):
    return await news_service.latest_news(db)


@router.get("/categories")
async def categories(db: AsyncSession = Depends(get_db)):
    return await news_service.categories(db)


@router.get("/stats")
async def stats(db: AsyncSession = Depends(get_db)):
    return await news_service.stats(db)


@router.post("/scrape", response_model=ScrapeResult, dependencies=[Depends(require_internal)])
async def scrape(db: AsyncSession = Depends(get_db), scraper: NewsScraper = Depends(get_news_scraper)):
    result = await news_service.scrape(db, scraper)
    # Cached pages are dropped only once the new rows are visible.
    await db.commit()
    await cache.invalidate_news()
    return result


@router.delete("/cleanup", dependencies=[Depends(require_internal)])
async def cleanup(db: AsyncSession = Depends(get_db)):
    deleted = await news_service.cleanup(db)
    await db.commit()
    await cache.invalidate_news()
    return {"message": f"Deleted {deleted} old news items", "deleted": deleted}


@router.get("/{news_id}")
async def get_news(news_id: int, db: AsyncSession = Depends(get_db)):
    news = await news_service.get_news(db, news_id)
    if not news:
        raise HTTPException(status_code=404, detail="News not found")
    return news
