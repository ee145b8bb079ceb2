"""
docstats - Project Statistics Service
Main FastAPI Application
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docstats.config import get_settings
from docstats.exceptions import StatisticsError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    from docstats.utils import init_db, close_db, close_redis
    await init_db()
    yield
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Factory function to create FastAPI app"""
    settings = get_settings()

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    application = FastAPI(
        title="docstats API",
        description="""
        Project Statistics Service

        Receives cost, performance and usage reports from the platform's
        internal services, merges them per project and serves enriched views.

        ## Features
        - Partial statistics reports merged with derived totals and ratios
        - Efficiency scoring, key metrics and recommendations
        - Batch, search and platform-wide aggregate reads
        - Retention cleanup for archived projects
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc" if settings.is_development else None,
    )

    # CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(StatisticsError)
    async def statistics_exception_handler(request: Request, exc: StatisticsError):
        """Translate statistics error kinds to their HTTP status"""
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "errors": exc.errors},
        )

    # Global exception handler
    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors"""
        logger.exception(f"Unhandled error on {request.url.path}")
        settings = get_settings()
        if settings.DEBUG:
            return JSONResponse(
                status_code=500,
                content={
                    "detail": str(exc),
                    "type": type(exc).__name__,
                },
            )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    from docstats.api.routes import api_router
    application.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")

    @application.get("/health")
    async def health_check():
        """Health check endpoint"""
        settings = get_settings()
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.APP_ENV,
        }

    @application.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": "docstats API",
            "version": "1.0.0",
            "docs": "/docs",
        }

    return application


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()

    uvicorn.run(
        "docstats.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development,
        workers=1 if settings.is_development else settings.WORKERS,
    )
