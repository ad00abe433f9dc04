"""crawlgate - FastAPI application entry point."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crawlgate.config import Settings
from crawlgate.context import SchedulerContext
from crawlgate.error_handling import install_error_handling
from crawlgate.observability import MetricsMiddleware, configure_logging, get_logger
from crawlgate.routes import (
    jobs_router,
    memory_router,
    prometheus_router,
    queues_router,
    tenants_router,
)

ContextFactory = Callable[[Settings], Awaitable[SchedulerContext]]

VERSION = "0.1.0"


def create_app(
    settings: Settings | None = None,
    *,
    context_factory: ContextFactory = SchedulerContext.create,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to run with; read from the environment when omitted.
        context_factory: Builds the scheduler context at startup. Tests pass
            one that injects fake clocks and units of work.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        """Application lifespan manager."""
        configure_logging(settings)

        # Startup: storage, queues, dispatchers and background monitors
        context = await context_factory(settings)
        await context.start()
        app.state.context = context
        log = get_logger(__name__)
        log.info(
            "crawlgate_started",
            version=VERSION,
            queues=context.queue_manager.queue_names,
        )

        yield

        # Shutdown: signal running work, stop loops, close database
        await context.close()
        app.state.context = None
        log.info("crawlgate_stopped")

    app = FastAPI(
        title="crawlgate",
        description="Multi-tenant crawl job admission and scheduling service",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Global error handling + request correlation
    install_error_handling(app)
    app.add_middleware(MetricsMiddleware)

    # CORS middleware for the admin dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(queues_router, prefix="/v1")
    app.include_router(memory_router, prefix="/v1")
    app.include_router(tenants_router, prefix="/v1")
    app.include_router(prometheus_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": VERSION}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API info."""
        return {
            "name": "crawlgate",
            "version": VERSION,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    _settings = Settings()
    uvicorn.run(
        "crawlgate.main:create_app",
        factory=True,
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
    )
