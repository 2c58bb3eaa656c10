"""
obe_core.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn obe_core.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from obe_core.api.deps import get_config, get_engine  # noqa: E402
from obe_core.api.routes.attainment import router as attainment_router  # noqa: E402
from obe_core.api.routes.gamification import router as gamification_router  # noqa: E402
from obe_core.api.routes.maintenance import router as maintenance_router  # noqa: E402
from obe_core.config import default_config_path, load_config  # noqa: E402
from obe_core.errors import ObeError  # noqa: E402
from obe_core.logging_setup import configure_logging  # noqa: E402
from obe_core.services.dispatch import shutdown_dispatcher  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) ``cors_allow_origins`` in config.yaml, if the file exists
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    if default_config_path().exists():
        return list(load_config().cors_allow_origins)

    return []


def _describe_validation(exc: RequestValidationError) -> str:
    """Collapse pydantic's error list into one readable sentence."""
    parts = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        field = ".".join(loc) or "body"
        parts.append(f"{field}: {err.get('msg', 'invalid')}")
    return "; ".join(parts) or "Invalid request"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: configure logging and warm the DB engine,
    then drain background side effects on exit."""
    # After startup, because Uvicorn reconfigures logging when it starts
    config = get_config()
    configure_logging(config.log_level)

    engine = get_engine()
    logger.info(
        "obe-core API started for %s — engine ready (%s)",
        config.institution_name, engine.url.database,
    )
    yield
    shutdown_dispatcher(wait=True)
    logger.info("obe-core API shutting down")


app = FastAPI(
    title="OBE Gamification & Attainment API",
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


# ---------------------------------------------------------------------------
# Error rendering: every failure is {"error": "..."}
# ---------------------------------------------------------------------------
@app.exception_handler(ObeError)
async def obe_error_handler(request: Request, exc: ObeError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": _describe_validation(exc)})


# Mount routers
app.include_router(gamification_router, prefix="/api")
app.include_router(attainment_router, prefix="/api")
app.include_router(maintenance_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
