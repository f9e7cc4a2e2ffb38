"""Dividend Ledger API - Main Application"""
import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dividend_ledger.config import get_settings
from dividend_ledger.api.v1.router import api_router
from dividend_ledger.models.database import init_db, close_db
from dividend_ledger.services.payment_provider import close_payment_provider
from dividend_ledger.services.payment_scheduler import start_payment_scheduler, stop_payment_scheduler

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting Dividend Ledger API", version=settings.app_version)

    await init_db()
    logger.info("Database initialized")

    if settings.scheduler_enabled:
        await start_payment_scheduler(interval_seconds=settings.payment_sweep_interval)
    else:
        logger.warning("Payment scheduler disabled - sweeps must be run externally")

    yield

    # Cleanup
    await stop_payment_scheduler()
    await close_payment_provider()
    await close_db()
    logger.info("Dividend Ledger API shutdown complete")


def create_app() -> FastAPI:
    """Create FastAPI application"""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="API for dividend computation, distribution and payment",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "currency": settings.currency,
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dividend_ledger.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
