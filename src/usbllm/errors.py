"""usbllm exception hierarchy."""

from __future__ import annotations


class LauncherError(Exception):
    """Base exception for all launcher errors."""


class SupervisorError(LauncherError):
    """A local llama-server start attempt failed."""


class NoFreePortError(SupervisorError):
    """No port in the scanned range could be bound."""

    def __init__(self, base: int, attempts: int) -> None:
        self.base = base
        self.attempts = attempts
        super().__init__(f"No free port found in {base}..{base + attempts - 1}")


class ReadinessTimeoutError(SupervisorError):
    """The subprocess never accepted a TCP connection."""

    def __init__(self, port: int, timeout: float) -> None:
        self.port = port
        self.timeout = timeout
        super().__init__(f"Timeout waiting for TCP on port {port} after {timeout:g}s")


class SpawnFailureError(SupervisorError):
    """The subprocess could not be spawned or exited before becoming ready."""


class UpstreamHttpError(LauncherError):
    """Upstream chat-completion call failed."""

    def __init__(self, status: int | None, reason: str = "") -> None:
        self.status = status
        self.reason = reason
        if status is None:
            super().__init__(f"Upstream error: {reason}")
        else:
            super().__init__(f"Upstream error: {status} {reason}".rstrip())


class ClientBadRequest(LauncherError):
    """Request body is malformed or missing required fields."""

    status_code = 400


class ClientPayloadTooLarge(ClientBadRequest):
    """Request body exceeds the configured cap."""

    status_code = 413

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__("Payload too large")
