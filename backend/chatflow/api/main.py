"""
FastAPI application: trigger intake, inbound webhook and the job cron.
"""
import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import settings
from ..flow import __version__
from ..services.job_runner import JobRunner
from .deps import get_job_runner
from .routes import cron_router, flows_router, inbound_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""

    app = FastAPI(
        title=settings.APP_NAME,
        description="Multi-channel conversational flow engine",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(flows_router, prefix="/api")
    app.include_router(cron_router, prefix="/api")
    app.include_router(inbound_router)  # Inbox webhooks (no prefix)

    @app.get("/")
    async def root():
        return {"name": settings.APP_NAME, "version": __version__, "status": "running"}

    @app.get("/health")
    async def health(runner: JobRunner = Depends(get_job_runner)):
        """Liveness plus whether this process polls for due jobs"""
        return {
            "status": "ok",
            "job_runner": "running" if runner.is_running else "stopped",
        }

    @app.on_event("startup")
    async def start_job_runner():
        logger.info(f"Starting {settings.APP_NAME} {__version__}")
        if settings.JOB_RUNNER_ENABLED:
            await get_job_runner().start()
        else:
            logger.info("Job runner disabled, due jobs run only through /api/cron/jobs")

    @app.on_event("shutdown")
    async def stop_job_runner():
        logger.info(f"Shutting down {settings.APP_NAME}")
        if settings.JOB_RUNNER_ENABLED:
            await get_job_runner().stop()

    return app


app = create_app()
