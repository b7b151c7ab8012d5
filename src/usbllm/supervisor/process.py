"""Single-instance supervisor for a local llama-server subprocess.

Lifecycle::

    IDLE -> STARTING -> READY -> IDLE   (stop() or unexpected exit)
            STARTING -> IDLE            (spawn failure / readiness timeout)

Concurrent ``ensure_started`` calls share one pending start task, so a burst of
requests never allocates two ports or spawns two processes.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import shlex
import signal
import sys
from dataclasses import dataclass

from usbllm.errors import SpawnFailureError
from usbllm.protocol import DEFAULT_HOST, LLAMA_BASE_PORT, LLAMA_PORT_ATTEMPTS
from usbllm.supervisor.ports import find_free_port, wait_for_ready

log = logging.getLogger(__name__)


class SupervisorState(str, enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    READY = "ready"


@dataclass(frozen=True)
class StartRequest:
    bin_path: str
    model_file: str
    prefer_port: int | None = None
    ctx_size: int | None = None
    threads: int | None = None
    temp_dir: str | None = None
    log_disable: bool = False
    ready_timeout: float = 40.0

    def args(self, port: int, host: str = DEFAULT_HOST) -> list[str]:
        """Command-line arguments (without the executable); absent options are omitted."""
        args = ["-m", self.model_file, "--host", host, "--port", str(port)]
        if self.ctx_size is not None:
            args += ["--ctx-size", str(self.ctx_size)]
        if self.threads is not None:
            args += ["--threads", str(self.threads)]
        if self.temp_dir:
            args += ["--temp-dir", self.temp_dir]
        if self.log_disable:
            args.append("--log-disable")
        return args


@dataclass
class ServerHandle:
    process: asyncio.subprocess.Process
    port: int
    url: str
    state: SupervisorState = SupervisorState.STARTING

    @property
    def pid(self) -> int:
        return self.process.pid


class ProcessSupervisor:
    """Owns at most one llama-server process for the lifetime of the launcher."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        base_port: int = LLAMA_BASE_PORT,
        port_attempts: int = LLAMA_PORT_ATTEMPTS,
        grace: float = 1.5,
    ) -> None:
        self._host = host
        self._base_port = base_port
        self._port_attempts = port_attempts
        self._grace = grace
        self._handle: ServerHandle | None = None
        self._pending: asyncio.Task[str] | None = None
        self._watchers: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    @property
    def state(self) -> SupervisorState:
        if self._handle is not None:
            return self._handle.state
        if self._pending is not None and not self._pending.done():
            return SupervisorState.STARTING
        return SupervisorState.IDLE

    def current_url(self) -> str | None:
        h = self._handle
        if h is not None and h.state is SupervisorState.READY:
            return h.url
        return None

    def stats(self) -> dict | None:
        h = self._handle
        if h is None:
            return None
        return {"pid": h.pid, "port": h.port, "url": h.url, "state": h.state.value}

    # ------------------------------------------------------------------
    async def ensure_started(self, req: StartRequest) -> str:
        """Return the base URL of a ready llama-server, starting one if needed."""
        url = self.current_url()
        if url is not None:
            return url

        if self._pending is None or self._pending.done():
            task = asyncio.create_task(self._start(req))
            task.add_done_callback(self._start_finished)
            self._pending = task

        pending = self._pending
        # A cancelled waiter (client gone) must not cancel the shared attempt.
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            if pending.cancelled():
                # stop() abandoned the attempt, not our caller.
                raise SpawnFailureError("Launcher shutting down, start abandoned") from None
            raise

    def _start_finished(self, task: asyncio.Task[str]) -> None:
        if self._pending is task:
            self._pending = None
        if not task.cancelled() and task.exception() is not None:
            log.debug("start attempt failed: %s", task.exception())

    async def _start(self, req: StartRequest) -> str:
        if req.prefer_port is not None:
            port = req.prefer_port
        else:
            port = find_free_port(self._base_port, self._port_attempts, self._host)

        cmd = [req.bin_path, *req.args(port, self._host)]
        log.info("starting llama-server: %s", shlex.join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise SpawnFailureError(f"Failed to spawn {req.bin_path}: {exc}") from exc

        handle = ServerHandle(process=proc, port=port, url=f"http://{self._host}:{port}")
        self._handle = handle
        watcher = asyncio.create_task(self._watch(handle))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

        try:
            await self._wait_ready(handle, req.ready_timeout)
        except BaseException:
            if self._handle is handle:
                self._handle = None
            await self._terminate(proc)
            raise

        handle.state = SupervisorState.READY
        log.info("llama-server ready at %s (pid %d)", handle.url, handle.pid)
        return handle.url

    async def _wait_ready(self, handle: ServerHandle, timeout: float) -> None:
        ready = asyncio.create_task(wait_for_ready(handle.port, timeout, host=self._host))
        exited = asyncio.create_task(handle.process.wait())
        try:
            done, _ = await asyncio.wait({ready, exited}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in (ready, exited):
                if not t.done():
                    t.cancel()

        if exited in done:
            raise SpawnFailureError(
                f"llama-server exited with code {exited.result()} before becoming ready"
            )
        ready.result()

    async def _watch(self, handle: ServerHandle) -> None:
        code = await handle.process.wait()
        if self._handle is not handle:
            log.debug("llama-server pid %d exited with code %s", handle.pid, code)
            return
        # Unsolicited exit: forget the handle so the next request respawns.
        self._handle = None
        if code != 0:
            log.warning("llama-server pid %d exited unexpectedly with code %s", handle.pid, code)
        else:
            log.info("llama-server pid %d exited", handle.pid)

    # ------------------------------------------------------------------
    async def stop(self) -> None:
        """Stop the running server (SIGINT, then SIGKILL after the grace window)."""
        handle, pending = self._handle, self._pending
        self._handle = None
        self._pending = None

        if pending is not None and not pending.done():
            pending.cancel()
            await asyncio.wait({pending})

        if handle is not None:
            await self._terminate(handle.process)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        log.info("stopping llama-server pid %d", proc.pid)
        try:
            if sys.platform == "win32":
                proc.terminate()
            else:
                proc.send_signal(signal.SIGINT)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), self._grace)
        except asyncio.TimeoutError:
            log.warning("llama-server pid %d still running after %.1fs, killing", proc.pid, self._grace)
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
