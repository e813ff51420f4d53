"""
Release Orchestrator API.

Serves the releases router; ``release-orchestrator-api`` runs it under uvicorn.
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from release_orchestrator import ORCHESTRATOR_VERSION  # type: ignore

from app.config import settings
from app.routers import releases

_log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # In-flight runs stop at their next step boundary.
    cancelled = releases.registry.cancel_all()
    if cancelled:
        _log.warning("Cancelled %d in-flight run(s) on shutdown", cancelled)


app = FastAPI(
    title=settings.API_TITLE,
    description="Build a pinned source tree on every platform and publish one release",
    version=settings.API_VERSION,
    lifespan=lifespan,
)

# Badges are fetched cross-origin by README renderers.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _log.warning(
        "Rejected %s %s: %s",
        request.method, request.url.path, exc.errors()[:3],
    )
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


@app.get("/health")
async def health_check():
    in_flight = sum(1 for entry in releases.registry.list() if not entry.done)
    return {
        "status": "healthy",
        "service": "release-orchestrator-api",
        "version": settings.API_VERSION,
        "orchestrator_version": ORCHESTRATOR_VERSION,
        "runs_in_flight": in_flight,
    }


app.include_router(releases.router, prefix="/releases", tags=["releases"])


def run() -> None:
    """Console entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    run()
