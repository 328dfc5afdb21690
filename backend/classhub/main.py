"""
ClassHub FastAPI Application Entry Point.

Run with: uvicorn classhub.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from classhub.api.routes import (
    auth,
    items,
    messages,
    realtime,
    state,
    timetable,
    users,
)
from classhub.config import get_settings
from classhub.errors import ConfigurationError
from classhub.realtime import broker

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    if not settings.backend_configured:
        logger.error("Backend credential is missing; every data request will fail until it is set")
    yield
    await broker.close()


app = FastAPI(
    title=settings.app_name,
    description=f"Class hub for {settings.class_name}: calendar, timetable, class list and group chat",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


# Include routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(items.router)
app.include_router(timetable.router)
app.include_router(state.router)
app.include_router(messages.router)
app.include_router(realtime.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "backend": "configured" if settings.backend_configured else "missing"}
