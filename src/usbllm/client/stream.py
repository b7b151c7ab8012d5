"""StreamRelay: async iterator over an upstream chat-completion SSE stream."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator

import httpx

from usbllm.errors import UpstreamHttpError
from usbllm.events import ContentDelta, Done, Meta, RelayEvent
from usbllm.protocol import DONE_SENTINEL, EP_CHAT_COMPLETIONS

log = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a concise business email assistant."


def extract_delta_text(obj: Any) -> str | None:
    """Return ``choices[0].delta.content`` or ``choices[0].text`` if non-empty."""
    if not isinstance(obj, dict):
        return None
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    c0 = choices[0]
    delta = c0.get("delta")
    if isinstance(delta, dict):
        content = delta.get("content")
        if isinstance(content, str) and content:
            return content
    text = c0.get("text")
    if isinstance(text, str) and text:
        return text
    return None


def parse_frame(frame: str) -> list[RelayEvent]:
    """Turn one blank-line-delimited SSE frame into relay events.

    Only ``data:`` lines count. ``[DONE]`` ends the frame; JSON without a
    recognisable delta becomes :class:`Meta`; non-JSON payloads are skipped.
    """
    events: list[RelayEvent] = []
    for line in frame.split("\n"):
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if not data:
            continue
        if data == DONE_SENTINEL:
            events.append(Done())
            break
        try:
            parsed = json.loads(data)
        except ValueError:
            log.debug("skipping non-JSON data line: %.80s", data)
            continue
        piece = extract_delta_text(parsed)
        events.append(ContentDelta(piece) if piece else Meta(parsed))
    return events


class StreamRelay:
    """Issue one streaming chat-completion POST per :meth:`stream` call.

    Usage::

        relay = StreamRelay(model="qwen", temperature=0.3)
        async for ev in relay.stream("http://127.0.0.1:8080", "Draft a reply"):
            ...
    """

    def __init__(
        self,
        model: str = "default",
        temperature: float = 0.3,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.system_prompt = system_prompt
        self._timeout = timeout
        self._transport = transport

    def _payload(self, user_content: str, system_prompt: str | None) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt or self.system_prompt},
                {"role": "user", "content": user_content},
            ],
            "temperature": self.temperature,
            "stream": True,
        }

    async def stream(
        self,
        base_url: str | None,
        user_content: str,
        system_prompt: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[RelayEvent]:
        if not base_url:
            yield Meta({"source": "stub"})
            yield Done()
            return

        url = base_url.rstrip("/") + EP_CHAT_COMPLETIONS
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(self._timeout, read=None),
        ) as http:
            try:
                async with http.stream("POST", url, json=self._payload(user_content, system_prompt)) as resp:
                    if not resp.is_success:
                        raise UpstreamHttpError(resp.status_code, resp.reason_phrase)
                    async with aclosing(self._events(resp, cancel)) as events:
                        async for ev in events:
                            yield ev
            except httpx.HTTPError as exc:
                raise UpstreamHttpError(None, str(exc) or type(exc).__name__) from exc

    @staticmethod
    async def _events(
        resp: httpx.Response,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[RelayEvent]:
        buffer = ""
        async for chunk in resp.aiter_text():
            if cancel is not None and cancel.is_set():
                return
            buffer = (buffer + chunk).replace("\r\n", "\n")
            while True:
                sep = buffer.find("\n\n")
                if sep == -1:
                    break
                frame, buffer = buffer[:sep], buffer[sep + 2:]
                for ev in parse_frame(frame):
                    yield ev
                    if isinstance(ev, Done):
                        return

        if cancel is not None and cancel.is_set():
            return
        for ev in parse_frame(buffer):
            yield ev
            if isinstance(ev, Done):
                return
        # Upstream closed without [DONE].
        yield Done()
