"""USBLLM: local launcher streaming e-mail drafts, client SDK."""

from usbllm.client.client import LauncherClient
from usbllm.client.stream import StreamRelay

__all__ = ["LauncherClient", "StreamRelay"]
