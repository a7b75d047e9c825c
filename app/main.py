"""FastAPI application entrypoint. No business logic; only wiring and the sweep lifecycle."""

from dotenv import load_dotenv

load_dotenv()

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app.api import router
from app.core.config import settings
from app.services.repo_acquirer import run_periodic_sweep

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the stale work-directory sweep for as long as the app is up."""
    sweep_task = None
    if settings.SWEEP_ENABLED:
        sweep_task = asyncio.create_task(run_periodic_sweep(settings))
    else:
        logger.info("Sweep is disabled (SWEEP_ENABLED=false); skipping.")
    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep_task


app = FastAPI(
    title="Repo Scan Worker",
    version="0.1.0",
    docs_url="/docs" if settings.APP_ENV == "dev" else None,
    redoc_url=None,
    lifespan=lifespan,
)

app.include_router(router)


def run() -> None:
    """Console entrypoint: serve the worker on PORT."""
    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
