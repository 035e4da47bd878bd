"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from salla_alerts.api.v1 import account, auth
from salla_alerts.core.dependencies import (
    get_app_settings,
    get_credential_store,
    get_http_client,
    get_salla_settings,
    get_telegram_settings,
)
from salla_alerts.core.exceptions import (
    LinkTokenConflict,
    NoTokensFound,
    SallaAPIError,
    TokenRefreshFailed,
)
from salla_alerts.plugins.salla import create_salla_router
from salla_alerts.plugins.telegram import create_telegram_router

# Setup logging
logging.basicConfig(level=logging.INFO)
# httpx logs full request URLs, and Telegram URLs carry the bot token
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("api")


# Request tracing middleware
class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Request tracing middleware."""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        logger.info("Request: %s %s", request.method, request.url.path)
        response = await call_next(request)
        logger.info("Response status: %s", response.status_code)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan for the FastAPI application."""
    store_db = get_credential_store()
    logger.info("Initializing database...")
    await store_db.connect()
    await store_db.create_tables()
    logger.info("Database initialized successfully!")
    yield
    await get_http_client().aclose()
    await store_db.close()


app = FastAPI(
    title="Salla Alerts API",
    description="Low stock alerts for Salla merchants over Telegram and email",
    version="1.0.0",
    lifespan=lifespan,
)

# Add request tracing middleware
app.add_middleware(RequestTracingMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_app_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(NoTokensFound)
async def no_tokens_handler(request: Request, exc: NoTokensFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(TokenRefreshFailed)
async def refresh_failed_handler(request: Request, exc: TokenRefreshFailed) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": f"{exc}. Please reconnect the store from Salla."},
    )


@app.exception_handler(LinkTokenConflict)
async def link_conflict_handler(request: Request, exc: LinkTokenConflict) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(SallaAPIError)
async def salla_error_handler(request: Request, exc: SallaAPIError) -> JSONResponse:
    logger.error("Salla API error on %s: %s", request.url.path, exc.detail)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# Resolve the values at startup
app.include_router(
    create_salla_router(get_salla_settings(), get_app_settings()),
    prefix="/salla",
    tags=["salla"],
)
app.include_router(
    create_telegram_router(get_telegram_settings()),
    prefix="/telegram",
    tags=["telegram"],
)

# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(account.router, prefix="/api/v1")


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {"message": "Welcome to the Salla Alerts API"}
