"""
questline.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn questline.api.main:app --reload --port 8000
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

from questline.api.deps import get_engine  # noqa: E402
from questline.api.routes.admin import router as admin_router  # noqa: E402
from questline.api.routes.public import router as public_router  # noqa: E402
from questline.errors import StoreUnavailable, ValidationError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """CORS_ALLOW_ORIGINS (comma-separated), else FRONTEND_URL, else none."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("Questline API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Questline API shutting down")


app = FastAPI(
    title="Questline API",
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

app.include_router(public_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422, content={"detail": str(exc), "field": exc.field}
    )


@app.exception_handler(StoreUnavailable)
async def _store_unavailable(request: Request, exc: StoreUnavailable):
    return JSONResponse(
        status_code=503, content={"detail": str(exc)}, headers={"Retry-After": "5"}
    )


@app.get("/api/health")
def health():
    return {"status": "ok"}
