"""Relay events and outbound SSE frames."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from usbllm.protocol import EV_DONE, EV_ERROR, EV_META, EV_PING, EV_TOKEN, EV_UPSTREAM


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class Meta:
    payload: Any


@dataclass(frozen=True)
class Done:
    pass


RelayEvent = Union[ContentDelta, Meta, Done]


@dataclass(frozen=True)
class OutboundFrame:
    """One client-visible SSE frame."""

    event: str
    data: Any = field(default_factory=dict)

    def encode(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data)}\n\n"

    # --- constructors -------------------------------------------------------

    @classmethod
    def meta(cls, **data: Any) -> OutboundFrame:
        return cls(EV_META, data)

    @classmethod
    def token(cls, text: str) -> OutboundFrame:
        return cls(EV_TOKEN, {"text": text})

    @classmethod
    def ping(cls) -> OutboundFrame:
        return cls(EV_PING, {})

    @classmethod
    def error(cls, message: str) -> OutboundFrame:
        return cls(EV_ERROR, {"message": message})

    @classmethod
    def done(cls) -> OutboundFrame:
        return cls(EV_DONE, {})

    @classmethod
    def from_relay(cls, ev: RelayEvent) -> OutboundFrame:
        if isinstance(ev, ContentDelta):
            return cls.token(ev.text)
        if isinstance(ev, Meta):
            return cls(EV_UPSTREAM, ev.payload)
        if isinstance(ev, Done):
            return cls.done()
        raise TypeError(f"unknown relay event {ev!r}")
