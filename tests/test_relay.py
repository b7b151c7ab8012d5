"""Tests for StreamRelay using httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from usbllm.client.stream import StreamRelay, extract_delta_text, parse_frame
from usbllm.errors import UpstreamHttpError
from usbllm.events import ContentDelta, Done, Meta

BASE = "http://upstream.test"


def delta(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}) + "\n\n"


class _Chunks(httpx.AsyncByteStream):
    def __init__(self, chunks: list[str]) -> None:
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for c in self.chunks:
            yield c.encode()

    async def aclose(self) -> None:
        self.closed = True


class Upstream:
    """Records requests and replies with a fixed chunked SSE body."""

    def __init__(self, chunks: list[str], status: int = 200) -> None:
        self.chunks = chunks
        self.status = status
        self.requests: list[httpx.Request] = []
        self.streams: list[_Chunks] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        stream = _Chunks(self.chunks)
        self.streams.append(stream)
        return httpx.Response(self.status, stream=stream, headers={"content-type": "text/event-stream"})

    def relay(self, **kw) -> StreamRelay:
        return StreamRelay(model="tiny", temperature=0.2, transport=httpx.MockTransport(self), **kw)


async def collect(agen) -> list:
    return [ev async for ev in agen]


class TestParsing:
    def test_delta_content(self):
        assert extract_delta_text({"choices": [{"delta": {"content": "hi"}}]}) == "hi"

    def test_plain_text(self):
        assert extract_delta_text({"choices": [{"text": "yo"}]}) == "yo"

    def test_empty_or_unknown_shapes(self):
        assert extract_delta_text({"choices": [{"delta": {"content": ""}}]}) is None
        assert extract_delta_text({"choices": []}) is None
        assert extract_delta_text([1, 2]) is None

    def test_frame_ignores_comments_and_non_json(self):
        frame = ": keepalive\nevent: x\ndata: not json\ndata: {\"usage\": {}}"
        assert parse_frame(frame) == [Meta({"usage": {}})]

    def test_done_stops_frame(self):
        assert parse_frame("data: [DONE]\ndata: {\"a\": 1}") == [Done()]


class TestStream:
    async def test_two_deltas_then_done(self):
        up = Upstream([delta("Hel"), delta("lo"), "data: [DONE]\n\n"])
        relay = up.relay()

        events = await collect(relay.stream(BASE, "hi"))
        assert events == [ContentDelta("Hel"), ContentDelta("lo"), Done()]

        again = await collect(relay.stream(BASE, "hi"))
        assert again == events
        assert len(up.requests) == 2

    async def test_request_payload(self):
        up = Upstream(["data: [DONE]\n\n"])
        await collect(up.relay().stream(BASE + "/", "draft please", "be brief"))

        req = up.requests[0]
        assert req.method == "POST"
        assert req.url.path == "/v1/chat/completions"
        body = json.loads(req.content)
        assert body == {
            "model": "tiny",
            "messages": [
                {"role": "system", "content": "be brief"},
                {"role": "user", "content": "draft please"},
            ],
            "temperature": 0.2,
            "stream": True,
        }

    async def test_default_system_prompt(self):
        up = Upstream(["data: [DONE]\n\n"])
        await collect(up.relay().stream(BASE, "x"))
        body = json.loads(up.requests[0].content)
        assert body["messages"][0]["content"] == "You are a concise business email assistant."

    async def test_synthesizes_done_when_upstream_just_closes(self):
        up = Upstream([delta("a"), delta("b")])
        events = await collect(up.relay().stream(BASE, "x"))
        assert events == [ContentDelta("a"), ContentDelta("b"), Done()]

    async def test_trailing_frame_without_blank_line(self):
        up = Upstream([delta("a"), 'data: {"choices": [{"text": "z"}]}'])
        events = await collect(up.relay().stream(BASE, "x"))
        assert events == [ContentDelta("a"), ContentDelta("z"), Done()]

    async def test_bytes_after_done_are_discarded(self):
        up = Upstream([delta("a") + "data: [DONE]\n\n" + delta("late")])
        events = await collect(up.relay().stream(BASE, "x"))
        assert events == [ContentDelta("a"), Done()]

    async def test_frames_split_across_chunks_and_crlf(self):
        raw = delta("one").replace("\n", "\r\n") + delta("two")
        chunks = [raw[:7], raw[7:20], raw[20:]]
        up = Upstream(chunks + ["data: [DONE]\r\n\r\n"])
        events = await collect(up.relay().stream(BASE, "x"))
        assert events == [ContentDelta("one"), ContentDelta("two"), Done()]

    async def test_unrecognized_json_is_meta(self):
        up = Upstream(['data: {"timings": {"n": 3}}\n\n', "data: oops\n\n", delta("t")])
        events = await collect(up.relay().stream(BASE, "x"))
        assert events == [Meta({"timings": {"n": 3}}), ContentDelta("t"), Done()]

    async def test_no_base_url_is_stub_meta(self):
        relay = StreamRelay()
        assert await collect(relay.stream(None, "x")) == [Meta({"source": "stub"}), Done()]

    async def test_http_error_status(self):
        up = Upstream([], status=503)
        with pytest.raises(UpstreamHttpError) as err:
            await collect(up.relay().stream(BASE, "x"))
        assert err.value.status == 503
        assert "503" in str(err.value)

    async def test_transport_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        relay = StreamRelay(transport=httpx.MockTransport(refuse))
        with pytest.raises(UpstreamHttpError) as err:
            await collect(relay.stream(BASE, "x"))
        assert err.value.status is None


class TestCancellation:
    async def test_cancel_token_stops_reading(self):
        up = Upstream([delta("a"), delta("b"), delta("c"), "data: [DONE]\n\n"])
        cancel = asyncio.Event()
        events = []
        async for ev in up.relay().stream(BASE, "x", cancel=cancel):
            events.append(ev)
            cancel.set()
        assert events == [ContentDelta("a")]
        assert up.streams[0].closed

    async def test_abandoned_iteration_releases_response(self):
        up = Upstream([delta("a"), delta("b"), "data: [DONE]\n\n"])
        agen = up.relay().stream(BASE, "x")
        assert await agen.__anext__() == ContentDelta("a")
        await agen.aclose()
        assert up.streams[0].closed
