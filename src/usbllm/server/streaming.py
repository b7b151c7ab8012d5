"""Draft streaming: pick a backend per request and emit uniform SSE frames.

Three paths, tried in order:
  - external upstream : ``upstream_url`` is configured, proxy it
  - local autostart   : spawn llama-server via the supervisor, then proxy it
  - stub              : deterministic offline draft at a fixed cadence
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator

from usbllm.client.stream import StreamRelay
from usbllm.config import LauncherSettings
from usbllm.errors import SupervisorError, UpstreamHttpError
from usbllm.events import Done, OutboundFrame
from usbllm.server.models import ModelRegistry, ResolvedModel
from usbllm.supervisor.process import ProcessSupervisor

log = logging.getLogger(__name__)

STUB_MAX_TOKENS = 120
STUB_DELAY_MS = 40
STUB_DELAY_RANGE = (10, 200)


@dataclass(frozen=True)
class DraftRequest:
    user_content: str
    system_prompt: str | None = None
    max_tokens: int | None = None
    delay_ms: float | None = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def tokenize_for_demo(text: str, max_tokens: int) -> list[str]:
    """Split on whitespace and punctuation, keeping the separators as tokens."""
    flat = re.sub(r"\s+", " ", text).strip()
    parts = [p for p in re.split(r"(\s|[,.;:!?])", flat) if p]
    return parts[: max(1, max_tokens)]


def stub_draft(prompt: str) -> str:
    return (
        "Hello,\n\nThanks for your note. Here's a short first draft based on your request:\n\n"
        + prompt[:200]
        + "\n\nBest regards,\nUSB-LLM"
    )


def clamp(n: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, n))


class DraftRouter:
    """Route one draft request to upstream, local llama-server, or the stub."""

    def __init__(
        self,
        settings: LauncherSettings,
        supervisor: ProcessSupervisor,
        relay: StreamRelay,
        registry: ModelRegistry,
    ) -> None:
        self.settings = settings
        self.supervisor = supervisor
        self.relay = relay
        self.registry = registry

    # ------------------------------------------------------------------
    def resolve_model(self) -> ResolvedModel:
        s = self.settings
        return self.registry.resolve(model_file=s.model_file, model_id=s.model_id, models_dir=s.models_dir)

    def mode(self) -> tuple[str, str | None]:
        """Return ``(mode, submode)`` as reported by /healthz."""
        if self.settings.upstream_url:
            return "upstream", "external"
        if self.settings.local_configured:
            return "upstream", "local-ready" if self.supervisor.current_url() else "local-idle"
        return "stub", None

    # ------------------------------------------------------------------
    async def stream(self, req: DraftRequest, cancel: asyncio.Event) -> AsyncIterator[OutboundFrame]:
        if self.settings.upstream_url:
            path = self._external(req, cancel)
        elif self.settings.local_configured:
            path = self._local(req, cancel)
        else:
            path = self._stub(req, cancel)

        try:
            async with aclosing(path) as frames:
                async for frame in frames:
                    yield frame
        except Exception:
            log.exception("draft stream failed")
            yield OutboundFrame.error("Internal error")
            yield OutboundFrame.done()

    async def _external(self, req: DraftRequest, cancel: asyncio.Event) -> AsyncIterator[OutboundFrame]:
        url = self.settings.upstream_url
        yield OutboundFrame.meta(source="llama-server", url=url, model=self.relay.model, started_at=_now())
        async with aclosing(self._relay(url, req, cancel)) as frames:
            async for frame in frames:
                yield frame

    async def _local(self, req: DraftRequest, cancel: asyncio.Event) -> AsyncIterator[OutboundFrame]:
        resolved = self.resolve_model()
        if resolved.status != "ok" or not resolved.abs_path:
            log.warning("local model unavailable (status=%s), using stub", resolved.status)
            yield OutboundFrame.error(
                "Local model not found (USBLLM_MODEL_FILE missing and no resolved model "
                "by USBLLM_MODEL_ID). Falling back to stub."
            )
            async with aclosing(self._stub(req, cancel)) as frames:
                async for frame in frames:
                    yield frame
            return

        yield OutboundFrame.meta(source="supervisor", status="starting")
        try:
            url = await self.supervisor.ensure_started(self.settings.start_request(resolved.abs_path))
        except SupervisorError as exc:
            log.error("local llama-server failed to start: %s", exc)
            yield OutboundFrame.error(str(exc) or "Failed to start local model")
            yield OutboundFrame.done()
            return

        yield OutboundFrame.meta(source="supervisor", status="ready", url=url)
        async with aclosing(self._relay(url, req, cancel)) as frames:
            async for frame in frames:
                yield frame

    async def _relay(self, base_url: str, req: DraftRequest, cancel: asyncio.Event) -> AsyncIterator[OutboundFrame]:
        try:
            async with aclosing(
                self.relay.stream(base_url, req.user_content, req.system_prompt, cancel)
            ) as events:
                async for ev in events:
                    yield OutboundFrame.from_relay(ev)
                    if isinstance(ev, Done):
                        return
        except UpstreamHttpError as exc:
            log.warning("upstream %s failed: %s", base_url, exc)
            yield OutboundFrame.error(str(exc))
            yield OutboundFrame.done()

    async def _stub(self, req: DraftRequest, cancel: asyncio.Event) -> AsyncIterator[OutboundFrame]:
        yield OutboundFrame.meta(source="stub", started_at=_now())

        max_tokens = req.max_tokens if req.max_tokens is not None else STUB_MAX_TOKENS
        delay_ms = req.delay_ms if req.delay_ms is not None else STUB_DELAY_MS
        delay = clamp(delay_ms, *STUB_DELAY_RANGE) / 1000
        chunks = tokenize_for_demo(stub_draft(req.user_content), max_tokens)

        pings: asyncio.Queue[OutboundFrame] = asyncio.Queue()

        async def keepalive() -> None:
            while True:
                await asyncio.sleep(self.settings.ping_interval)
                pings.put_nowait(OutboundFrame.ping())

        pinger = asyncio.create_task(keepalive())
        try:
            for chunk in chunks:
                await asyncio.sleep(delay)
                if cancel.is_set():
                    return
                while not pings.empty():
                    yield pings.get_nowait()
                yield OutboundFrame.token(chunk)
            yield OutboundFrame.done()
        finally:
            pinger.cancel()
            await asyncio.wait({pinger})
