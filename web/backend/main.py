#!/usr/bin/env python3
"""
DeskRat Race Server - FastAPI

Broadcaster OAuth, race/betting API and the realtime push socket.
Services (credential manager, EventSub session, ...) are started and
stopped by the lifespan.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from twitchapi.errors import TwitchAPIError
from web.backend.api.router import router as api_router
from web.backend.auth.router import router as auth_router
from web.backend.dependencies import Services, limiter
from web.backend.realtime import router as realtime_router

logger = logging.getLogger(__name__)


# ============================================================
# SECURITY HEADERS MIDDLEWARE
# ============================================================
async def security_headers(request: Request, call_next):
    """Security headers on every HTTP response."""
    response: Response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
    # JSON + redirects only
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    return response


async def twitch_api_error(request: Request, exc: TwitchAPIError):
    logger.error(f"❌ Upstream Twitch error on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"error": "Twitch API request failed", "status": exc.status})


def create_app(services: Services) -> FastAPI:
    settings = services.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 DeskRat Race Server starting...")
        await services.start()
        logger.info(f"DeskRat Race Server is running on {settings.server_base_url}")
        yield
        logger.info("👋 DeskRat Race Server shutting down...")
        try:
            await asyncio.wait_for(services.stop(), timeout=settings.shutdown_grace)
        except asyncio.TimeoutError:
            logger.error(f"❌ Graceful shutdown timed out after {settings.shutdown_grace}s, exiting anyway")

    app = FastAPI(
        title="DeskRat Race API",
        description="Twitch EventSub bridge for the DeskRat race overlay",
        version="1.0.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.services = services

    # Rate Limiter state
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(TwitchAPIError, twitch_api_error)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.middleware("http")(security_headers)

    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
    app.include_router(api_router, prefix="/api", tags=["API"])
    app.include_router(realtime_router, tags=["Realtime"])

    @app.get("/")
    async def index():
        return PlainTextResponse("DeskRat Race Server is running!")

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "eventsub": services.session.state.value,
            "needsReAuth": services.credentials.needs_reauth(),
            "realtimeClients": services.hub.client_count,
        }

    return app
