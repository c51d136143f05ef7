from fastapi import FastAPI
from pydantic_settings import BaseSettings, SettingsConfigDict
from contextlib import asynccontextmanager
import logging

from routers.api import router as api_router
from schemas import AppHealthOK
from core.service_manager import service_manager

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Overridable with ORCHESTRATOR_APP_NAME, ORCHESTRATOR_DEBUG, ORCHESTRATOR_LOG_LEVEL
    model_config = SettingsConfigDict(env_prefix="ORCHESTRATOR_")

    app_name: str = "Load Test Orchestrator API"
    debug: bool = False
    log_level: str = "INFO"


settings = Settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup/shutdown without deprecated on_event."""
    logger.info("Starting background services")
    await service_manager.start_services()

    try:
        yield
    finally:
        logger.info("Stopping background services")
        await service_manager.stop_services()


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)


@app.get("/", tags=["meta"])
async def read_root() -> dict[str, str]:
    return {"message": settings.app_name}


@app.get("/health", tags=["meta"], response_model=AppHealthOK)
async def healthcheck() -> AppHealthOK:
    return AppHealthOK(status="ok", app=settings.app_name)


# mount API router under /api
app.include_router(api_router, prefix="/api")
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
