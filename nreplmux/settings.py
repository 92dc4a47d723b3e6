"""Project-scoped settings persisted between connect attempts."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import tomllib

from .config import CONFIG_DIR

LOG = logging.getLogger(__name__)

STATE_FILE = CONFIG_DIR / "state.toml"

# Keys written by the connect flow.
SELECTED_CLJS_TYPE = "selectedCljsTypeName"
CLJS_REPL_TYPE = "cljsReplType"
CLJS_REPL_TYPE_HAS_BUILDS = "cljsReplTypeHasBuilds"


def _scope(project: Path | None) -> str:
    return str(project) if project is not None else ""


class MemorySettingsStore:
    """Settings kept in memory only."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self._projects: dict[str, dict[str, Any]] = {
            scope: dict(values) for scope, values in (initial or {}).items()
        }

    def get(self, project: Path | None, key: str, default: Any = None) -> Any:
        return self._projects.get(_scope(project), {}).get(key, default)

    def update(self, project: Path | None, key: str, value: Any) -> None:
        values = self._projects.setdefault(_scope(project), {})
        if value is None:
            values.pop(key, None)
        else:
            values[key] = value

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Copy of every stored value, keyed by project scope."""

        return {scope: dict(values) for scope, values in self._projects.items()}


class TomlSettingsStore(MemorySettingsStore):
    """Settings mirrored to a TOML file with one table per project root."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or STATE_FILE
        super().__init__(self._load())

    @property
    def path(self) -> Path:
        return self._path

    def update(self, project: Path | None, key: str, value: Any) -> None:
        super().update(project, key, value)
        try:
            self._save()
        except OSError:
            LOG.exception("Failed to persist settings", extra={"path": str(self._path)})

    def _load(self) -> dict[str, dict[str, Any]]:
        try:
            with self._path.open("rb") as handle:
                raw = tomllib.load(handle)
        except FileNotFoundError:
            return {}
        except (tomllib.TOMLDecodeError, OSError):
            LOG.warning("Ignoring unreadable settings file", extra={"path": str(self._path)})
            return {}
        projects = raw.get("projects")
        if not isinstance(projects, dict):
            return {}
        return {
            str(scope): dict(values)
            for scope, values in projects.items()
            if isinstance(values, dict)
        }

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        lines: list[str] = []
        for scope, values in sorted(self.snapshot().items()):
            if not values:
                continue
            lines.append(f"[projects.{_toml_value(scope)}]")
            for key in sorted(values):
                lines.append(f"{_toml_value(key)} = {_toml_value(values[key])}")
            lines.append("")
        self._path.write_text("\n".join(lines))


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value))


__all__ = [
    "CLJS_REPL_TYPE",
    "CLJS_REPL_TYPE_HAS_BUILDS",
    "MemorySettingsStore",
    "SELECTED_CLJS_TYPE",
    "STATE_FILE",
    "TomlSettingsStore",
]
