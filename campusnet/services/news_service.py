"""
News service: read side over scraped university news, plus the scrape and
cleanup jobs that maintain it.

List pages are cached (``news:list:*``).  Callers of ``scrape`` and
``cleanup`` commit first and then drop the whole prefix, so a concurrent
read cannot re-cache the old page.
"""
import asyncio
import logging
import math
from datetime import timedelta

from sqlalchemy import asc, delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campusnet.cache import cache
from campusnet.config import settings
from campusnet.models import News
from campusnet.schemas import NewsResponse, PaginatedResponse, ScrapeResult
from campusnet.services.scraper import NewsScraper
from campusnet.timeutils import subtract_months, utcnow

logger = logging.getLogger(__name__)

# Columns that are safe to sort by; anything else falls back to published_date.
_SORTABLE_COLUMNS: frozenset[str] = frozenset({"published_date", "scraped_at", "created_at", "title"})

LATEST_LIMIT = 5


def _news_to_dict(news: News) -> dict:
    return NewsResponse.model_validate(news).model_dump(mode="json")


def _resolve_sort(sort: str):
    """``-field`` sorts descending, ``field`` ascending; the id breaks ties."""
    descending = sort.startswith("-")
    name = sort.lstrip("-")
    if name not in _SORTABLE_COLUMNS:
        name, descending = "published_date", True
    direction = desc if descending else asc
    return direction(getattr(News, name)), direction(News.id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def list_news(
    db: AsyncSession,
    category: str | None = None,
    page: int = 1,
    page_size: int = 10,
    sort: str = "-published_date",
) -> PaginatedResponse:
    if category == "all":
        category = None
    cache_key = f"news:list:{category or 'all'}:{page}:{page_size}:{sort}"
    cached = await cache.get(cache_key)
    if cached:
        return PaginatedResponse(**cached)

    filters = [News.is_active.is_(True)]
    if category:
        filters.append(News.category == category)

    total: int = (await db.execute(select(func.count()).select_from(News).where(*filters))).scalar_one()
    result = await db.execute(
        select(News)
        .where(*filters)
        .order_by(*_resolve_sort(sort))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    response = PaginatedResponse(
        items=[_news_to_dict(n) for n in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )
    await cache.set(cache_key, response.model_dump(), ttl=settings.CACHE_TTL_LIST)
    return response


async def latest_news(db: AsyncSession, limit: int = LATEST_LIMIT) -> list[dict]:
    result = await db.execute(
        select(News)
        .where(News.is_active.is_(True))
        .order_by(News.published_date.desc(), News.id.desc())
        .limit(limit)
    )
    return [_news_to_dict(n) for n in result.scalars().all()]


async def get_news(db: AsyncSession, news_id: int) -> dict | None:
    news = await db.get(News, news_id)
    return _news_to_dict(news) if news else None


async def _category_counts(db: AsyncSession) -> list[tuple[str, int]]:
    count = func.count(News.id)
    result = await db.execute(
        select(News.category, count)
        .where(News.is_active.is_(True))
        .group_by(News.category)
        .order_by(count.desc(), News.category)
    )
    return [(category, n) for category, n in result.all()]


async def categories(db: AsyncSession) -> list[dict]:
    """Active categories with their item counts, largest first."""
    return [{"category": c, "count": n} for c, n in await _category_counts(db)]


async def stats(db: AsyncSession) -> dict:
    active = News.is_active.is_(True)
    total = (await db.execute(select(func.count()).select_from(News).where(active))).scalar_one()
    week_ago = utcnow() - timedelta(days=7)
    recent = (await db.execute(
        select(func.count()).select_from(News).where(active, News.published_date >= week_ago)
    )).scalar_one()
    return {
        "total": total,
        "recent_week": recent,
        "by_category": dict(await _category_counts(db)),
    }


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

async def save_items(db: AsyncSession, items: list[dict]) -> ScrapeResult:
    """Upsert scraped items keyed by ``source_url``."""
    saved = updated = 0
    now = utcnow()
    for item in items:
        result = await db.execute(select(News).where(News.source_url == item["source_url"]))
        news = result.scalar_one_or_none()
        if news is None:
            db.add(News(**item, scraped_at=now))
            saved += 1
        else:
            for field, value in item.items():
                setattr(news, field, value)
            news.scraped_at = now
            news.is_active = True
            updated += 1
    await db.flush()
    return ScrapeResult(saved=saved, updated=updated, total=len(items))


async def scrape(db: AsyncSession, scraper: NewsScraper | None = None) -> ScrapeResult:
    items = await (scraper or NewsScraper()).scrape()
    result = await save_items(db, items)
    logger.info("News scrape complete: %d new, %d updated", result.saved, result.updated)
    return result


async def cleanup(db: AsyncSession, months: int | None = None) -> int:
    """Delete news published before the retention window."""
    cutoff = subtract_months(utcnow(), settings.NEWS_RETENTION_MONTHS if months is None else months)
    result = await db.execute(delete(News).where(News.published_date < cutoff))
    return result.rowcount or 0


async def run_scrape_loop(
    session_factory: async_sessionmaker,
    interval: int | None = None,
    startup_delay: int | None = None,
) -> None:
    """
    Scrape shortly after startup, then every *interval* seconds until
    cancelled.  A failed round is logged and the loop keeps going.
    """
    interval = settings.NEWS_SCRAPE_INTERVAL if interval is None else interval
    delay = settings.NEWS_STARTUP_DELAY if startup_delay is None else startup_delay
    await asyncio.sleep(delay)
    while True:
        try:
            async with session_factory() as db:
                await scrape(db)
                await db.commit()
            await cache.invalidate_news()
        except Exception:
            logger.exception("Scheduled news scrape failed")
        await asyncio.sleep(interval)
