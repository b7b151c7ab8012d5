"""Shared fixtures: settings, fake llama-server executable, port helpers."""

from __future__ import annotations

import os
import socket
import stat
import sys
from pathlib import Path

import pytest

from usbllm.config import LauncherSettings

FAKE_SERVER = Path(__file__).parent / "fake_llama_server.py"

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell wrapper")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep USBLLM_* from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("USBLLM_") or key.startswith("FAKE_LLAMA_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_settings():
    def _make(**overrides) -> LauncherSettings:
        return LauncherSettings(**overrides)
    return _make


@pytest.fixture
def fake_llama(tmp_path) -> Path:
    """Executable wrapper that runs the fake llama-server with this interpreter."""
    wrapper = tmp_path / "llama-server"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_SERVER}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


@pytest.fixture
def model_file(tmp_path) -> Path:
    path = tmp_path / "tiny.gguf"
    path.write_bytes(b"GGUF")
    return path


@pytest.fixture
def spawn_log(tmp_path, monkeypatch) -> Path:
    path = tmp_path / "spawns.log"
    monkeypatch.setenv("FAKE_LLAMA_SPAWN_LOG", str(path))
    return path


def spawn_count(path: Path) -> int:
    if not path.exists():
        return 0
    return len(path.read_text().splitlines())


def listening_socket(port: int) -> socket.socket:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", port))
    s.listen(1)
    return s


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
