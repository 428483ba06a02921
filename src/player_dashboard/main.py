"""Main entry point for the player dashboard command service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from player_dashboard import __version__
from player_dashboard.api.v1 import (
    auth_router,
    commands_router,
    players_router,
    system_router,
)
from player_dashboard.core.errors import CircuitOpenError
from player_dashboard.core.settings import settings
from player_dashboard.services.container import ServiceContainer, build_container

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Player Dashboard API",
    description="Command dispatch and acknowledgment for display players",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(players_router, prefix="/api/v1")
app.include_router(commands_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Report HTTP errors as ``{"error": <detail>}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(CircuitOpenError)
async def circuit_open_handler(request: Request, exc: CircuitOpenError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": str(exc)},
    )


@app.on_event("startup")
async def on_startup() -> None:
    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services is None:
        services = build_container(settings)
        app.state.services = services
    await services.start()
    logger.info("%s %s started (%s)", settings.app_name, __version__, settings.environment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services is not None:
        await services.aclose()
    app.state.services = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Player Dashboard API",
        "version": __version__,
        "description": "Command dispatch and acknowledgment for display players",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    uvicorn.run("player_dashboard.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
