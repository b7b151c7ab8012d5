"""Launcher configuration using pydantic-settings (``USBLLM_`` env prefix)."""

from __future__ import annotations

import math

from pydantic import field_validator
from pydantic_settings import BaseSettings

from usbllm.protocol import DEFAULT_HOST, DEFAULT_PORT
from usbllm.supervisor.process import StartRequest


class LauncherSettings(BaseSettings):
    """Static launcher configuration, read once at startup."""

    model_config = {"env_prefix": "USBLLM_", "protected_namespaces": ()}

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    # Upstream proxy mode (if set, the supervisor is skipped)
    upstream_url: str | None = None
    model: str = "default"
    temperature: float = 0.3

    # Local autostart (only used when upstream_url is unset)
    autostart: bool = False
    llama_bin: str | None = None
    model_file: str | None = None
    model_id: str | None = None
    models_dir: str = "models"
    llama_port: int | None = None
    ctx_size: int | None = None
    threads: int | None = None
    temp_dir: str | None = None
    log_disable: bool = False

    system_prelude: str | None = None
    ui_allow_picker: bool = False

    max_body_bytes: int = 1024 * 1024
    ping_interval: float = 15.0
    ready_timeout: float = 40.0
    shutdown_grace: float = 1.5

    @field_validator(
        "upstream_url", "llama_bin", "model_file", "model_id", "temp_dir", "system_prelude",
        mode="before",
    )
    @classmethod
    def _blank_is_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("upstream_url")
    @classmethod
    def _strip_slash(cls, v: str | None) -> str | None:
        return v.rstrip("/") if v else v

    @field_validator("temperature", mode="before")
    @classmethod
    def _temperature_default(cls, v):
        if isinstance(v, str):
            try:
                t = float(v.strip())
            except ValueError:
                return 0.3
            return t if math.isfinite(t) else 0.3
        return v

    @field_validator("llama_port", "ctx_size", "threads", mode="before")
    @classmethod
    def _unparseable_int_is_none(cls, v):
        if isinstance(v, str):
            try:
                return int(v.strip())
            except ValueError:
                return None
        return v

    @property
    def local_configured(self) -> bool:
        """Autostart is on and a binary plus some model reference are set."""
        return bool(self.autostart and self.llama_bin and (self.model_file or self.model_id))

    def start_request(self, model_path: str) -> StartRequest:
        assert self.llama_bin is not None
        return StartRequest(
            bin_path=self.llama_bin,
            model_file=model_path,
            prefer_port=self.llama_port,
            ctx_size=self.ctx_size,
            threads=self.threads,
            temp_dir=self.temp_dir,
            log_disable=self.log_disable,
            ready_timeout=self.ready_timeout,
        )
