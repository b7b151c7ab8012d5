"""LauncherClient: sync HTTP client SDK for the usbllm launcher."""

from __future__ import annotations

import json
from typing import Any, Iterator

import httpx

from usbllm.protocol import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    EP_HEALTH,
    EP_MODELS,
    EP_STATS,
    EP_STREAM,
    EV_DONE,
    EV_TOKEN,
)


def iter_sse(lines: Iterator[str]) -> Iterator[tuple[str, Any]]:
    """Parse ``event:``/``data:`` lines into ``(event, data)`` pairs."""
    event, data = "message", []
    for line in lines:
        if not line:
            if data:
                raw = "\n".join(data)
                try:
                    payload = json.loads(raw)
                except ValueError:
                    payload = raw
                yield event, payload
            event, data = "message", []
        elif line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            data.append(line[5:].strip())


class LauncherClient:
    """Thin client for the usbllm launcher.

    All calls are synchronous (httpx).
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base = f"http://{host}:{port}"
        self._http = httpx.Client(base_url=self._base, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # --- Launcher info ------------------------------------------------------

    def health(self) -> dict:
        return self._http.get(EP_HEALTH).raise_for_status().json()

    def models(self) -> dict:
        return self._http.get(EP_MODELS).raise_for_status().json()

    def stats(self) -> dict:
        return self._http.get(EP_STATS).raise_for_status().json()

    # --- Drafts -------------------------------------------------------------

    def stream_draft(
        self,
        prompt: str | None = None,
        *,
        max_tokens: int | None = None,
        delay_ms: int | None = None,
        **structured: Any,
    ) -> Iterator[tuple[str, Any]]:
        """Stream a draft, yielding ``(event, data)`` until ``done``.

        Args:
            prompt: Legacy single prompt string.
            max_tokens: Stub token cap.
            delay_ms: Stub inter-token delay.
            **structured: flow, tone, length, subject, context, instructions.
        """
        body: dict[str, Any] = {k: v for k, v in structured.items() if v is not None}
        if prompt is not None:
            body["prompt"] = prompt
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        if delay_ms is not None:
            body["delay_ms"] = delay_ms

        with self._http.stream("POST", EP_STREAM, json=body) as resp:
            if resp.is_error:
                resp.read()
                resp.raise_for_status()
            for event, data in iter_sse(resp.iter_lines()):
                yield event, data
                if event == EV_DONE:
                    return

    def draft_text(self, prompt: str | None = None, **kwargs: Any) -> str:
        """Collect all ``token`` frames of a draft into one string."""
        return "".join(
            data.get("text", "")
            for event, data in self.stream_draft(prompt, **kwargs)
            if event == EV_TOKEN and isinstance(data, dict)
        )
