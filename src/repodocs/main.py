"""FastAPI application entry point."""

import logging
import shutil
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Logging constants defined here (not in constants/) because logging.basicConfig()
# must run before any module imports that might create loggers.
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    format=LOG_FORMAT,
    datefmt=DATE_FORMAT,
    level=logging.INFO,
)

# Unify uvicorn loggers with app format
for uvicorn_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
    uvicorn_logger = logging.getLogger(uvicorn_logger_name)
    uvicorn_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    uvicorn_logger.addHandler(handler)

from repodocs.api.routers import crawl, docs, generate, llm  # noqa: E402
from repodocs.config import ConfigError, load_settings  # noqa: E402

logger = logging.getLogger(__name__)


def _ensure_output_dir() -> None:
    """Create the output directory and report where projects are stored.

    Projects left in staging by an interrupted save are removed.
    """
    try:
        settings = load_settings()
    except (ValueError, OSError, ConfigError) as e:
        logger.error(f"Could not load settings: {e}")
        return

    output_path = settings.output_path
    output_path.mkdir(parents=True, exist_ok=True)
    for entry in output_path.iterdir():
        if entry.is_dir() and entry.name.endswith(settings.paths.staging_suffix):
            logger.warning(f"Removing interrupted save: {entry.name}")
            shutil.rmtree(entry)
    logger.info(f"Output directory: {output_path}")
    logger.info(f"Default LLM: {settings.active_provider}/{settings.active_model}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan handler for startup and shutdown events.

    On startup:
    - Ensures the output directory exists and clears interrupted saves
    """
    _ensure_output_dir()
    logger.info("repodocs started")

    yield


app = FastAPI(
    title="repodocs",
    description="Tutorial-style documentation generator for GitHub repositories",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(crawl.router)
app.include_router(generate.router)
app.include_router(docs.router)
app.include_router(llm.router)
