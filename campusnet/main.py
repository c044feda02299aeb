import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campusnet import __version__
from campusnet.cache import cache
from campusnet.clients import service_client
from campusnet.config import settings
from campusnet.database import get_sessionmaker
from campusnet.errors import add_exception_handlers
from campusnet.gemini import gemini
from campusnet.log import configure_logging
from campusnet.middleware import TimingMiddleware
from campusnet.routers import advisor, auth, engagement, feed, messages, network, news, notifications, users
from campusnet.services import news_service

logger = logging.getLogger(__name__)

# Service name (as used in the SERVICES setting) -> router.
SERVICE_ROUTERS: dict[str, APIRouter] = {
    "auth": auth.router,
    "users": users.router,
    "feed": feed.router,
    "engagement": engagement.router,
    "network": network.router,
    "messages": messages.router,
    "notifications": notifications.router,
    "news": news.router,
    "ai": advisor.router,
}


def resolve_services(names: set[str]) -> list[str]:
    if "all" in names:
        return list(SERVICE_ROUTERS)
    unknown = names - SERVICE_ROUTERS.keys()
    if unknown:
        raise ValueError(f"Unknown service(s) in SERVICES: {', '.join(sorted(unknown))}")
    return [name for name in SERVICE_ROUTERS if name in names]


def create_app(services: set[str] | None = None) -> FastAPI:
    configure_logging()
    enabled = resolve_services(services or settings.enabled_services)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        await cache.connect()  # falls back to no-cache mode when Redis is down
        scrape_task = None
        if "news" in enabled and settings.NEWS_SCRAPE_ON_STARTUP:
            scrape_task = asyncio.create_task(news_service.run_scrape_loop(get_sessionmaker()))
        logger.info("CampusNet started with services: %s", ", ".join(enabled))
        yield
        # Shutdown
        if scrape_task is not None:
            scrape_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scrape_task
        await service_client.aclose()
        await gemini.aclose()
        await cache.disconnect()

    app = FastAPI(
        title="CampusNet API",
        description="Professional networking for a university community",
        version=__version__,
        lifespan=lifespan,
    )

    # Middleware
    app.add_middleware(TimingMiddleware)
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    add_exception_handlers(app)

    # Routers
    for name in enabled:
        app.include_router(SERVICE_ROUTERS[name])

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "version": __version__,
            "services": enabled,
            "cache": cache.stats,
        }

    return app


app = create_app()
