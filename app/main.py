from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.modules.identity_sync.api.commands import router as commands_router
from app.modules.identity_sync.domain.scheduler import SyncScheduler
from app.shared.core.config import get_settings
from app.shared.core.dependencies import get_sync_container
from app.shared.core.exceptions import AccessSyncException
from app.shared.core.http import close_http_client, init_http_client
from app.shared.core.logging import setup_logging

setup_logging()
settings = get_settings()
logger = structlog.get_logger()


def build_scheduler() -> SyncScheduler:
    container = get_sync_container()
    return SyncScheduler(
        container.github_sync,
        container.atlassian_sync,
        container.slack,
        github_org_name=container.settings.GITHUB_ORG_NAME or "",
        sync_schedule=container.settings.CRON_SCHEDULE,
        inactivity_3m_schedule=container.settings.ATLASSIAN_INACTIVITY_3M_SCHEDULE,
        inactivity_6m_schedule=container.settings.ATLASSIAN_INACTIVITY_6M_SCHEDULE,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("app_starting", app_name=settings.APP_NAME)
    await init_http_client()

    scheduler: Optional[SyncScheduler] = None
    if not settings.TESTING:
        scheduler = build_scheduler()
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("app_shutting_down")
    if scheduler is not None:
        scheduler.stop()
    await close_http_client()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
app.include_router(commands_router)


@app.exception_handler(AccessSyncException)
async def access_sync_exception_handler(
    request: Request, exc: AccessSyncException
) -> JSONResponse:
    """Handle custom application exceptions."""
    logger.warning(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message, "details": exc.details},
    )


@app.get("/health", tags=["system"])
async def health() -> dict[str, Any]:
    scheduler: Optional[SyncScheduler] = getattr(app.state, "scheduler", None)
    return {
        "status": "ok",
        "scheduler_running": bool(scheduler and scheduler.scheduler.running),
    }


def run() -> None:
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=3000)


if __name__ == "__main__":
    run()
