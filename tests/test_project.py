"""Tests for project root discovery and build manifests."""

from __future__ import annotations

from pathlib import Path

import pytest

from nreplmux.project import (
    ManifestError,
    NoOpenDocument,
    StaticWorkspace,
    figwheel_main_projects,
    find_project_root,
    nrepl_port_file,
    port_file_for,
    read_port_file,
    resolve_project_root,
    shadow_builds,
)


def _touch(path: Path, text: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_project_root_is_nearest_marker_directory(tmp_path: Path) -> None:
    _touch(tmp_path / "deps.edn", "{}")
    document = _touch(tmp_path / "src" / "app" / "core.clj", "(ns app.core)")

    assert find_project_root(document, tmp_path) == tmp_path


def test_nested_project_wins_over_workspace_root(tmp_path: Path) -> None:
    _touch(tmp_path / "project.clj")
    _touch(tmp_path / "frontend" / "shadow-cljs.edn", "{}")
    document = _touch(tmp_path / "frontend" / "src" / "ui.cljs")

    assert find_project_root(document, tmp_path) == tmp_path / "frontend"


def test_without_marker_the_workspace_root_is_used(tmp_path: Path) -> None:
    document = _touch(tmp_path / "notes" / "scratch.clj")

    assert find_project_root(document, tmp_path) == tmp_path


def test_resolve_requires_an_open_document(tmp_path: Path) -> None:
    with pytest.raises(NoOpenDocument):
        resolve_project_root(StaticWorkspace(None, tmp_path))


def test_resolve_rejects_document_outside_workspace(tmp_path: Path) -> None:
    outside = _touch(tmp_path / "elsewhere" / "core.clj")

    with pytest.raises(NoOpenDocument):
        resolve_project_root(StaticWorkspace(outside, tmp_path / "workspace"))


def test_resolve_returns_project_and_workspace_folder(tmp_path: Path) -> None:
    _touch(tmp_path / "deps.edn", "{}")
    document = _touch(tmp_path / "src" / "core.clj")

    assert resolve_project_root(StaticWorkspace(document, tmp_path)) == (tmp_path, tmp_path)


def test_port_file_depends_on_repl_type(tmp_path: Path) -> None:
    assert port_file_for("shadow-cljs") == ".shadow-cljs/nrepl.port"
    assert port_file_for("Figwheel Main") == ".nrepl-port"
    assert port_file_for("") == ".nrepl-port"
    assert nrepl_port_file(tmp_path, ".nrepl-port") == tmp_path / ".nrepl-port"


def test_read_port_file_strips_whitespace(tmp_path: Path) -> None:
    port_file = _touch(tmp_path / ".nrepl-port", "57321\n")

    assert read_port_file(port_file) == "57321"
    assert read_port_file(tmp_path / "missing") is None


def test_figwheel_main_projects_lists_build_files(tmp_path: Path) -> None:
    _touch(tmp_path / "dev.cljs.edn", "{}")
    _touch(tmp_path / "admin.cljs.edn", "{}")
    _touch(tmp_path / "deps.edn", "{}")

    assert figwheel_main_projects(tmp_path) == ["admin", "dev"]


def test_shadow_builds_reads_build_keys(tmp_path: Path) -> None:
    _touch(tmp_path / "shadow-cljs.edn", "{:builds {:app {:target :browser}}}")

    assert shadow_builds(tmp_path) == [":app", "node-repl", "browser-repl"]


def test_shadow_builds_without_builds_key_offers_pseudo_builds(tmp_path: Path) -> None:
    _touch(tmp_path / "shadow-cljs.edn", "{:source-paths [\"src\"]}")

    assert shadow_builds(tmp_path) == ["node-repl", "browser-repl"]


def test_shadow_builds_reports_unreadable_config(tmp_path: Path) -> None:
    with pytest.raises(ManifestError):
        shadow_builds(tmp_path)

    _touch(tmp_path / "shadow-cljs.edn", "{:builds {:app")
    with pytest.raises(ManifestError):
        shadow_builds(tmp_path)
