"""Model registry: resolve the single local .gguf model the launcher may autostart.

Resolution precedence:
  1. explicit ``model_file`` (ok if it exists, else missing)
  2. ``model_id`` looked up in ``models/registry.json`` under ``models_dir``
  3. none (the stub is used)

The absolute path is for the supervisor only and never leaves the launcher.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

log = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


@dataclass
class RegistryEntry:
    id: str
    file: str
    name: str | None = None
    license: str | None = None
    ctx: int | None = None
    quant: str | None = None
    size_mb: float | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> RegistryEntry | None:
        if not isinstance(raw.get("id"), str) or not isinstance(raw.get("file"), str):
            return None
        return cls(
            id=raw["id"],
            file=raw["file"],
            name=raw.get("name"),
            license=raw.get("license"),
            ctx=raw.get("ctx"),
            quant=raw.get("quant"),
            size_mb=raw.get("size_mb"),
        )


@dataclass
class ResolvedModel:
    status: Literal["ok", "missing", "none"]
    abs_path: str | None = None
    id: str | None = None
    basename: str | None = None
    name: str | None = None
    license: str | None = None
    ctx: int | None = None
    quant: str | None = None

    def public(self) -> dict[str, Any]:
        if self.status == "none":
            return {"status": "none"}
        return {
            "id": self.id,
            "name": self.name,
            "basename": self.basename,
            "license": self.license,
            "ctx": self.ctx,
            "quant": self.quant,
            "status": self.status,
        }


class ModelRegistry:
    """Read-only view over ``models/registry.json``."""

    def __init__(self, candidates: list[Path] | None = None) -> None:
        if candidates is None:
            candidates = [
                Path.cwd() / "models" / "registry.json",
                PROJECT_ROOT / "models" / "registry.json",
            ]
        self._candidates = candidates

    # ------------------------------------------------------------------
    def entries(self) -> list[RegistryEntry]:
        for path in self._candidates:
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                continue
            items = raw.get("models") if isinstance(raw, dict) else raw
            if not isinstance(items, list):
                continue
            return [e for e in (RegistryEntry.from_dict(i) for i in items if isinstance(i, dict)) if e]
        return []

    def by_id(self, model_id: str) -> RegistryEntry | None:
        return next((e for e in self.entries() if e.id == model_id), None)

    def by_filename(self, filename: str) -> RegistryEntry | None:
        base = Path(filename).name.lower()
        return next((e for e in self.entries() if e.file.lower() == base), None)

    # ------------------------------------------------------------------
    def resolve(
        self,
        *,
        model_file: str | None = None,
        model_id: str | None = None,
        models_dir: str = "models",
    ) -> ResolvedModel:
        if model_file:
            abs_path = Path(model_file).resolve()
            match = self.by_filename(str(abs_path))
            ok = abs_path.is_file()
            if not ok:
                log.warning("model file %s not found", abs_path)
            return ResolvedModel(
                status="ok" if ok else "missing",
                abs_path=str(abs_path) if ok else None,
                id=match.id if match else (None if ok else model_id),
                basename=abs_path.name,
                name=match.name if match else None,
                license=match.license if match else None,
                ctx=match.ctx if match else None,
                quant=match.quant if match else None,
            )

        if model_id:
            entry = self.by_id(model_id)
            if entry is None:
                log.warning("model id %r not in registry", model_id)
                return ResolvedModel(status="missing", id=model_id)
            abs_path = (Path(models_dir) / entry.file).resolve()
            ok = abs_path.is_file()
            return ResolvedModel(
                status="ok" if ok else "missing",
                abs_path=str(abs_path) if ok else None,
                id=entry.id,
                basename=entry.file,
                name=entry.name,
                license=entry.license,
                ctx=entry.ctx,
                quant=entry.quant,
            )

        return ResolvedModel(status="none")
