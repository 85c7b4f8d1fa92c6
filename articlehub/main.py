import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from articlehub import __version__
from articlehub.cache import CacheManager
from articlehub.config import Settings, settings as default_settings
from articlehub.database import build_engine, build_session_factory
from articlehub.errors import register_exception_handlers
from articlehub.middleware import RequesterContextMiddleware, TimingMiddleware
from articlehub.routers import articles, auth, users

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup; the app keeps serving from the database if Redis is down.
    await app.state.cache.connect()
    yield
    # Shutdown
    await app.state.cache.disconnect()
    await app.state.engine.dispose()


def create_app(settings: Settings | None = None, engine: AsyncEngine | None = None) -> FastAPI:
    """
    Build the application with its own engine, session factory and cache.

    Nothing is kept in module globals: handlers reach the store through
    ``app.state`` via the ``get_db`` / ``get_cache`` dependencies, so tests
    (or a second app in one process) can pass their own *settings* and
    *engine*.
    """
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="articlehub",
        description="Article and user API with JWT auth and per-article visibility",
        version=__version__,
        lifespan=lifespan,
    )

    engine = engine or build_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.cache = CacheManager(
        settings.REDIS_URL,
        ttl_list=settings.CACHE_TTL_LIST,
        ttl_detail=settings.CACHE_TTL_DETAIL,
    )

    register_exception_handlers(app)

    # Middleware (last added runs first)
    app.add_middleware(RequesterContextMiddleware, settings=settings)
    app.add_middleware(TimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(articles.router)

    @app.get("/health")
    async def health(request: Request):
        return {
            "status": "healthy",
            "version": __version__,
            "cache": request.app.state.cache.stats,
        }

    logger.debug("Application created for %s environment", settings.APP_ENV)
    return app


app = create_app()
