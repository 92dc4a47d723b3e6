"""Project root discovery and the on-disk files the connect flow reads."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import edn_format

from .services import Workspace

LOG = logging.getLogger(__name__)

PROJECT_FILE_NAMES = ("project.clj", "shadow-cljs.edn", "deps.edn")
DEFAULT_PORT_FILE = ".nrepl-port"
SHADOW_PORT_FILE = ".shadow-cljs/nrepl.port"
SHADOW_CONFIG_FILE = "shadow-cljs.edn"
SHADOW_PSEUDO_BUILDS = ("node-repl", "browser-repl")
FIGWHEEL_MAIN_SUFFIX = ".cljs.edn"


class NoOpenDocument(RuntimeError):
    """Raised when there is no document to derive the project root from."""


class ManifestError(RuntimeError):
    """Raised when a build tool config file cannot be read or parsed."""


@dataclass(frozen=True, slots=True)
class StaticWorkspace:
    """Workspace with a fixed active document, used by the CLI host and tests."""

    document: Path | None = None
    root: Path | None = None

    def active_document(self) -> Path | None:
        return self.document

    def workspace_folder(self, document: Path) -> Path | None:
        if self.root is None:
            return document.parent
        if document.is_relative_to(self.root):
            return self.root
        return None


def resolve_project_root(workspace: Workspace) -> tuple[Path, Path]:
    """Return ``(project_root, workspace_folder)`` for the active document."""

    document = workspace.active_document()
    folder = workspace.workspace_folder(document) if document is not None else None
    if document is None or folder is None:
        raise NoOpenDocument(
            "There is no document opened in the workspace. Aborting. "
            "Please open a file in your Clojure project and try again."
        )
    return find_project_root(document, folder), folder


def find_project_root(
    document: Path,
    workspace_root: Path,
    markers: tuple[str, ...] = PROJECT_FILE_NAMES,
) -> Path:
    """Walk up from the document's directory to the first directory with a project marker.

    The walk stops at ``workspace_root``; when no marker is found the
    workspace root itself is returned.
    """

    root = workspace_root.resolve()
    directory = document.resolve().parent
    while True:
        if any((directory / name).exists() for name in markers):
            return directory
        if directory == root or directory.parent == directory:
            return root
        directory = directory.parent


def port_file_for(cljs_type_name: str | None) -> str:
    """Relative path of the nREPL port file for the selected REPL type."""

    if cljs_type_name == "shadow-cljs":
        return SHADOW_PORT_FILE
    return DEFAULT_PORT_FILE


def nrepl_port_file(project_dir: Path | None, sub_path: str) -> Path:
    if project_dir is None:
        return Path(sub_path)
    return project_dir / sub_path


def read_port_file(path: Path) -> str | None:
    """Return the stripped contents of a port file, or ``None`` if it is missing or unreadable."""

    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        LOG.warning("Unreadable nREPL port file", extra={"path": str(path), "error": str(exc)})
        return None


def figwheel_main_projects(project_dir: Path) -> list[str]:
    """Names of the ``*.cljs.edn`` build files in the project root."""

    return sorted(
        entry.name[: -len(FIGWHEEL_MAIN_SUFFIX)]
        for entry in project_dir.iterdir()
        if entry.is_file() and entry.name.endswith(FIGWHEEL_MAIN_SUFFIX)
    )


def shadow_builds(project_dir: Path) -> list[str]:
    """Build names from ``shadow-cljs.edn`` as ``:keyword`` strings plus the pseudo builds."""

    path = project_dir / SHADOW_CONFIG_FILE
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestError(f"Failed to read {path}: {exc}") from exc
    try:
        parsed = edn_format.loads(text)
    except Exception as exc:
        raise ManifestError(f"Failed to parse {path}: {exc}") from exc
    builds = parsed.get(edn_format.Keyword("builds")) if hasattr(parsed, "get") else None
    names = [f":{_keyword_name(key)}" for key in (builds or {})]
    names.extend(SHADOW_PSEUDO_BUILDS)
    return names


def _keyword_name(key: object) -> str:
    name = getattr(key, "name", None)
    return name if isinstance(name, str) else str(key)


__all__ = [
    "DEFAULT_PORT_FILE",
    "ManifestError",
    "NoOpenDocument",
    "PROJECT_FILE_NAMES",
    "SHADOW_PORT_FILE",
    "SHADOW_PSEUDO_BUILDS",
    "StaticWorkspace",
    "figwheel_main_projects",
    "find_project_root",
    "nrepl_port_file",
    "port_file_for",
    "read_port_file",
    "resolve_project_root",
    "shadow_builds",
]
