"""Tests for the sync LauncherClient SDK."""

from __future__ import annotations

import json

import httpx
import pytest

from usbllm.client.client import LauncherClient, iter_sse


def sse(*frames: tuple[str, object]) -> str:
    return "".join(f"event: {e}\ndata: {json.dumps(d)}\n\n" for e, d in frames)


def test_iter_sse_parses_frames():
    lines = ["event: meta", 'data: {"source": "stub"}', "", ": comment", "data: plain", ""]
    assert list(iter_sse(iter(lines))) == [("meta", {"source": "stub"}), ("message", "plain")]


class TestLauncherClient:
    def make(self, handler) -> LauncherClient:
        return LauncherClient(port=1234, transport=httpx.MockTransport(handler))

    def test_health(self):
        def handler(request):
            assert request.url == "http://127.0.0.1:1234/healthz"
            return httpx.Response(200, json={"ok": True, "mode": "stub"})

        with self.make(handler) as client:
            assert client.health()["mode"] == "stub"

    def test_stream_draft_sends_body_and_stops_at_done(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            body = sse(("meta", {"source": "stub"}), ("token", {"text": "Hi"}), ("done", {}), ("token", {"text": "x"}))
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        with self.make(handler) as client:
            events = list(client.stream_draft(flow="reply", tone="formal", length="short", subject=None, max_tokens=3))

        assert [e for e, _ in events] == ["meta", "token", "done"]
        assert seen[0] == {"flow": "reply", "tone": "formal", "length": "short", "max_tokens": 3}

    def test_draft_text(self):
        def handler(request):
            body = sse(("meta", {}), ("token", {"text": "Dear"}), ("ping", {}), ("token", {"text": " Ann"}), ("done", {}))
            return httpx.Response(200, text=body)

        with self.make(handler) as client:
            assert client.draft_text("write") == "Dear Ann"

    def test_error_status_raises(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Invalid JSON"})

        with self.make(handler) as client, pytest.raises(httpx.HTTPStatusError):
            list(client.stream_draft("x"))
