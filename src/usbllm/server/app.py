"""FastAPI app factory + lifespan for the usbllm launcher."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from usbllm.client.stream import StreamRelay
from usbllm.config import LauncherSettings
from usbllm.server.models import ModelRegistry
from usbllm.server.routes import router
from usbllm.server.streaming import DraftRouter
from usbllm.supervisor.process import ProcessSupervisor

log = logging.getLogger(__name__)

SECURITY_HEADERS = [
    (b"cache-control", b"no-store, no-cache, must-revalidate"),
    (b"pragma", b"no-cache"),
    (b"expires", b"0"),
    (b"content-security-policy", b"default-src 'self'; base-uri 'none'; frame-ancestors 'none'"),
    (b"x-content-type-options", b"nosniff"),
    (b"referrer-policy", b"no-referrer"),
    (b"cross-origin-opener-policy", b"same-origin"),
    (b"cross-origin-resource-policy", b"same-origin"),
]


class SecurityHeadersMiddleware:
    """Add no-store and hardening headers to every HTTP response."""

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                present = {k.lower() for k, _ in message.get("headers", [])}
                extra = [(k, v) for k, v in SECURITY_HEADERS if k not in present]
                message["headers"] = list(message.get("headers", [])) + extra
            await send(message)

        await self.app(scope, receive, send_with_headers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: LauncherSettings = app.state.settings
    log.info("usbllm launcher starting up")
    supervisor = ProcessSupervisor(grace=settings.shutdown_grace)
    relay = StreamRelay(model=settings.model, temperature=settings.temperature)
    app.state.supervisor = supervisor
    app.state.drafts = DraftRouter(settings, supervisor, relay, ModelRegistry())
    yield
    log.info("usbllm launcher shutting down")
    try:
        await asyncio.wait_for(supervisor.stop(), settings.shutdown_grace * 2)
    except asyncio.TimeoutError:
        log.warning("llama-server did not stop within %.1fs, giving up", settings.shutdown_grace * 2)


async def internal_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal Server Error"}, status_code=500)


def create_app(settings: LauncherSettings | None = None) -> FastAPI:
    app = FastAPI(
        title="usbllm",
        description="Local launcher streaming e-mail drafts from llama-server or an offline stub",
        lifespan=lifespan,
    )
    app.state.settings = settings or LauncherSettings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_exception_handler(Exception, internal_error)
    app.include_router(router)
    return app
