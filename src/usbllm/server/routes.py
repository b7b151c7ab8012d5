"""All HTTP endpoints for the usbllm launcher."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from usbllm.errors import ClientBadRequest, ClientPayloadTooLarge
from usbllm.prompt import compose_prompts
from usbllm.protocol import EP_HEALTH, EP_INDEX, EP_MODELS, EP_STATS, EP_STREAM
from usbllm.server.streaming import DraftRequest

log = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_POLL = 0.25

INDEX_HTML = """<!doctype html>
<meta charset="utf-8">
<title>USB-LLM Launcher</title>
<h1>USB-LLM launcher is running</h1>
<ul>
  <li><code>GET /</code> - this page</li>
  <li><code>GET /healthz</code> - JSON health (mode/submode/runtime)</li>
  <li><code>GET /v1/models</code> - read-only selected model</li>
  <li><code>GET /stats</code> - launcher and llama-server resource usage</li>
  <li><code>POST /api/stream</code> - SSE stream</li>
</ul>
<p>Bound to <code>127.0.0.1</code> only.</p>
"""


# --- Pydantic request bodies ------------------------------------------------

class StreamRequest(BaseModel):
    # Text fields stay loose: non-strings are ignored by compose_prompts.
    prompt: Any = None
    max_tokens: float | None = Field(None, allow_inf_nan=False)
    delay_ms: float | None = Field(None, allow_inf_nan=False)
    flow: Any = None
    tone: Any = None
    length: Any = None
    subject: Any = None
    context: Any = None
    instructions: Any = None


async def read_json(request: Request, limit: int) -> dict:
    """Read the request body (at most *limit* bytes) and parse it as JSON."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise ClientPayloadTooLarge(limit)

    total = 0
    chunks: list[bytes] = []
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            raise ClientPayloadTooLarge(limit)
        chunks.append(chunk)

    try:
        raw = b"".join(chunks).decode("utf-8").strip()
        return json.loads(raw) if raw else {}
    except ValueError as exc:
        raise ClientBadRequest("Invalid JSON") from exc


async def watch_disconnect(request: Request, cancel: asyncio.Event, interval: float = DISCONNECT_POLL) -> None:
    """Set *cancel* once the client hangs up."""
    while not cancel.is_set():
        if await request.is_disconnected():
            log.debug("client disconnected from %s", request.url.path)
            cancel.set()
            return
        await asyncio.sleep(interval)


# --- Routes ------------------------------------------------------------------

@router.get(EP_INDEX, response_class=HTMLResponse)
async def index():
    return INDEX_HTML


@router.get(EP_HEALTH)
async def health(request: Request):
    settings = request.app.state.settings
    drafts = request.app.state.drafts
    mode, submode = drafts.mode()
    resolved = drafts.resolve_model()
    if settings.upstream_url:
        source = "upstream"
    elif resolved.status == "ok":
        source = "local"
    else:
        source = "none"
    return {
        "ok": True,
        "mode": mode,
        "submode": submode,
        "runtime": {"source": source, "selectedModelId": resolved.id},
    }


@router.get(EP_MODELS)
async def list_models(request: Request):
    resolved = request.app.state.drafts.resolve_model()
    return {
        "selected": resolved.public(),
        "ui": {"allowSelection": request.app.state.settings.ui_allow_picker},
    }


@router.get(EP_STATS)
async def stats(request: Request):
    """Launcher resource usage, plus the local llama-server when one is running."""
    import psutil

    proc = psutil.Process(os.getpid())
    info: dict = {
        "cpu_percent": proc.cpu_percent(interval=None),
        "rss_mb": round(proc.memory_info().rss / (1024 ** 2), 1),
        "llama_server": None,
    }

    server = request.app.state.supervisor.stats()
    if server is not None:
        try:
            child = psutil.Process(server["pid"])
            server["rss_mb"] = round(child.memory_info().rss / (1024 ** 2), 1)
            server["cpu_percent"] = child.cpu_percent(interval=None)
        except psutil.Error:
            pass
        info["llama_server"] = server

    return info


@router.post(EP_STREAM)
async def stream(request: Request):
    """Stream a draft as SSE.

    - Body is either ``{prompt}`` (legacy) or ``{flow, tone, length, ...}``
    - Optional ``max_tokens`` / ``delay_ms`` shape the stub cadence
    - Validation errors are plain JSON (400/413); nothing is streamed
    """
    settings = request.app.state.settings
    try:
        raw = await read_json(request, settings.max_body_bytes)
        body = StreamRequest.model_validate(raw)
    except ClientBadRequest as exc:
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
    except ValidationError:
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    system, user = compose_prompts(body.model_dump(), settings.system_prelude)
    if not user:
        return JSONResponse(
            {"error": "Provide `prompt` string or structured fields {flow,tone,length,...}."},
            status_code=400,
        )

    draft = DraftRequest(
        user_content=user,
        system_prompt=system,
        max_tokens=int(body.max_tokens) if body.max_tokens is not None else None,
        delay_ms=body.delay_ms,
    )
    drafts = request.app.state.drafts

    async def sse():
        cancel = asyncio.Event()
        watcher = asyncio.create_task(watch_disconnect(request, cancel))
        frames = drafts.stream(draft, cancel)
        try:
            async for frame in frames:
                if cancel.is_set():
                    break
                yield frame.encode()
        finally:
            cancel.set()
            watcher.cancel()
            await frames.aclose()

    return StreamingResponse(
        sse(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-store, no-cache, must-revalidate",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
