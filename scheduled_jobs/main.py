import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import FastAPI

from scheduled_jobs.api.v1.admin import router as admin_router
from scheduled_jobs.api.v1.metrics import router as metrics_router
from scheduled_jobs.scheduler.manager import ScheduledJobManager
from scheduled_jobs.settings import settings

logger = logging.getLogger(__name__)

def create_app(managers: Iterable[ScheduledJobManager], title: Optional[str] = None) -> FastAPI:
    """
    Builds the service app around already-configured managers.
    The lifespan starts every manager's loops and stops them on shutdown.
    """
    registry = {m.model_name: m for m in managers}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        for manager in registry.values():
            await manager.start()
        logger.info("Started %d scheduled job manager(s): %s", len(registry), ", ".join(registry))

        yield

        # Shutdown
        for manager in registry.values():
            await manager.stop()

    app = FastAPI(
        title=title or settings.PROJECT_NAME,
        lifespan=lifespan
    )
    app.state.managers = registry

    app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.get("/health")
    async def health():
        return {"status": "ok", "managers": {name: m.running for name, m in registry.items()}}

    return app
