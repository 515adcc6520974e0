"""
swoon.api.main — FastAPI application entry point
==================================================

Run with::

    uvicorn swoon.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from swoon.api.deps import get_cache, get_config, get_engine  # noqa: E402
from swoon.api.routes.account import router as account_router  # noqa: E402
from swoon.api.routes.admin import router as admin_router  # noqa: E402
from swoon.api.routes.gifts import router as gifts_router  # noqa: E402
from swoon.database.engine import init_db, run_db  # noqa: E402
from swoon.errors import EngineError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def _configure_logging() -> None:
    try:
        level = get_config().log_level
    except FileNotFoundError:
        level = "INFO"
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — verify the schema and warm the cache.

    Schema creation, seeding and the first cache load are blocking, so they
    run on a worker thread.
    """
    _configure_logging()
    engine = get_engine()
    await run_db(init_db, engine)
    cache = await run_db(get_cache)
    logger.info(
        "Swoon API started — engine ready (%s), config v%d",
        engine.url.database, cache.version,
    )
    yield
    logger.info("Swoon API shutting down")


app = FastAPI(
    title="Swoon Economy API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(account_router, prefix="/api")
app.include_router(gifts_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    if exc.retryable:
        logger.warning("%s %s failed (%s): %s", request.method, request.url.path, exc.code, exc)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.get("/api/health")
def health():
    return {"status": "ok"}
