"""Tests for the ClojureScript REPL type strategies."""

from __future__ import annotations

from pathlib import Path

import pytest

from nreplmux.config import AppConfig, CustomCljsReplConfig
from nreplmux.repl_types import (
    FIGWHEEL,
    FIGWHEEL_MAIN,
    SHADOW_CLJS,
    BootstrapFailed,
    ConnectAborted,
    ReplType,
    ReplTypeContext,
    build_repl_types,
    shadow_cljs_repl_start,
)
from nreplmux.settings import CLJS_REPL_TYPE_HAS_BUILDS, MemorySettingsStore
from nreplmux.state import ConnectionState
from tests.fakes import FakePrompter, FakeSession, RecordingSink, Reply


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _context(
    project_dir: Path,
    prompter: FakePrompter | None = None,
    *,
    config: AppConfig | None = None,
    opened: list[str] | None = None,
) -> ReplTypeContext:
    return ReplTypeContext(
        state=ConnectionState(project_dir=project_dir),
        prompter=prompter or FakePrompter(),
        settings=MemorySettingsStore(),
        output=RecordingSink(),
        connection_log=RecordingSink(),
        config=config or AppConfig(),
        open_url=(opened if opened is not None else []).append,
    )


def _custom(**overrides: str) -> CustomCljsReplConfig:
    values = {
        "name": "My REPL",
        "start_code": "(start-my-repl)",
        "tell_user_to_start_regexp": "waiting for app",
        "connected_regexp": "READY",
    }
    values.update(overrides)
    return CustomCljsReplConfig(**values)


def test_registry_lists_builtins_then_custom() -> None:
    registry = build_repl_types(_custom())

    assert registry.names() == [FIGWHEEL_MAIN, FIGWHEEL, SHADOW_CLJS, "My REPL"]
    assert registry[FIGWHEEL_MAIN].has_start
    assert not registry["My REPL"].has_start


def test_custom_type_cannot_shadow_a_builtin() -> None:
    registry = build_repl_types(_custom(name=FIGWHEEL))

    assert len(registry) == 3
    assert registry[FIGWHEEL].name == FIGWHEEL
    assert registry[FIGWHEEL].connected(None, ["Prompt will show"], [])


def test_repl_type_requires_start_and_started_together() -> None:
    async def _connect(*_args: object) -> bool:
        return True

    with pytest.raises(ValueError):
        ReplType(name="broken", connect=_connect, connected=lambda *_: True, start=_connect)


@pytest.mark.anyio
async def test_figwheel_main_start_treats_running_build_as_started(tmp_path: Path) -> None:
    (tmp_path / "dev.cljs.edn").write_text("{:main app.core}")
    (tmp_path / "test.cljs.edn").write_text("{:main app.test}")
    prompter = FakePrompter(multi_picks=[["dev", "test"]])
    ctx = _context(tmp_path, prompter)
    session = FakeSession(replies={"figwheel.main.api/start": Reply(err=("Build already running\n",), value=None)})
    repl = build_repl_types()[FIGWHEEL_MAIN]

    assert repl.start is not None and repl.started is not None
    started = await repl.start(ctx, session, repl.name, repl.started)

    assert started
    assert session.evaluated == ["(do (require 'figwheel.main.api) (figwheel.main.api/start \"dev\" \"test\"))"]
    assert prompter.calls[0] == ("many", ("dev", "test"), ())
    assert ctx.state.cljs_build == "dev"
    assert ctx.settings.get(tmp_path, CLJS_REPL_TYPE_HAS_BUILDS) is True
    assert ctx.settings.get(tmp_path, "qps-figwheel-main-projects") == ["dev", "test"]


@pytest.mark.anyio
async def test_figwheel_main_without_build_files_aborts(tmp_path: Path) -> None:
    prompter = FakePrompter()
    ctx = _context(tmp_path, prompter)
    repl = build_repl_types()[FIGWHEEL_MAIN]

    with pytest.raises(ConnectAborted):
        await repl.connect(ctx, FakeSession(), repl.name, repl.connected)

    assert prompter.errors
    assert "no figwheel project files" in ctx.output.text


@pytest.mark.anyio
async def test_figwheel_main_connect_uses_picked_build(tmp_path: Path) -> None:
    (tmp_path / "dev.cljs.edn").write_text("{}")
    prompter = FakePrompter(picks=["dev"])
    ctx = _context(tmp_path, prompter)
    session = FakeSession(replies={"cljs-repl": Reply(out=("To quit, type: :cljs/quit\n",))})
    repl = build_repl_types()[FIGWHEEL_MAIN]

    assert await repl.connect(ctx, session, repl.name, repl.connected)
    assert session.evaluated == ["(do (use 'figwheel.main.api) (figwheel.main.api/cljs-repl \"dev\"))"]
    assert ctx.settings.get(tmp_path, "qps-figwheel-main-build") == "dev"


@pytest.mark.anyio
async def test_figwheel_opens_browser_once(tmp_path: Path) -> None:
    opened: list[str] = []
    ctx = _context(tmp_path, opened=opened)
    server_line = "Figwheel: Starting server at http://0.0.0.0:3449\n"
    session = FakeSession(replies={"figwheel-sidecar": Reply(out=(server_line, server_line, "Prompt will show\n"))})
    repl = build_repl_types()[FIGWHEEL]

    assert await repl.connect(ctx, session, repl.name, repl.connected)
    assert opened == ["http://0.0.0.0:3449"]
    assert ctx.state.cljs_build is None


@pytest.mark.anyio
async def test_figwheel_respects_disabled_browser_setting(tmp_path: Path) -> None:
    opened: list[str] = []
    config = AppConfig(open_browser_when_figwheel_started=False)
    ctx = _context(tmp_path, config=config, opened=opened)
    session = FakeSession(replies={"figwheel-sidecar": Reply(out=("Figwheel: Starting server at http://x\n",))})
    repl = build_repl_types()[FIGWHEEL]

    assert not await repl.connect(ctx, session, repl.name, repl.connected)
    assert opened == []
    assert "Not automatically opening" in ctx.output.text


@pytest.mark.anyio
async def test_shadow_cljs_selects_picked_build(tmp_path: Path) -> None:
    (tmp_path / "shadow-cljs.edn").write_text(
        "{:source-paths [\"src\"] :builds {:app {:target :browser} :test {:target :node-test}}}"
    )
    prompter = FakePrompter(picks=[":app"])
    ctx = _context(tmp_path, prompter)
    session = FakeSession(replies={"nrepl-select": Reply(value="[:selected :app]")})
    repl = build_repl_types()[SHADOW_CLJS]

    assert await repl.connect(ctx, session, repl.name, repl.connected)
    kind, values, _selected = prompter.calls[0]
    assert kind == "one"
    assert sorted(values[:2]) == [":app", ":test"]
    assert values[2:] == ("node-repl", "browser-repl")
    assert session.evaluated == ["(shadow.cljs.devtools.api/nrepl-select :app)"]
    assert ctx.state.cljs_build == ":app"


@pytest.mark.anyio
async def test_shadow_cljs_without_config_aborts(tmp_path: Path) -> None:
    ctx = _context(tmp_path)
    repl = build_repl_types()[SHADOW_CLJS]

    with pytest.raises(ConnectAborted):
        await repl.connect(ctx, FakeSession(), repl.name, repl.connected)


def test_shadow_cljs_start_code_for_pseudo_builds() -> None:
    assert shadow_cljs_repl_start(":app") == "(shadow.cljs.devtools.api/nrepl-select :app)"
    assert shadow_cljs_repl_start("node-repl") == "(shadow.cljs.devtools.api/node-repl)"
    assert shadow_cljs_repl_start("") is None


@pytest.mark.anyio
async def test_custom_type_connects_on_pattern_and_prompts_user_once(tmp_path: Path) -> None:
    ctx = _context(tmp_path)
    session = FakeSession(replies={"(start-my-repl)": Reply(out=("waiting for app\n", "waiting for app\n", "READY\n"))})
    repl = build_repl_types(_custom())["My REPL"]

    assert await repl.connect(ctx, session, repl.name, repl.connected)
    assert ctx.output.text.count("Please, start your ClojureScript app.") == 1


@pytest.mark.anyio
async def test_custom_type_without_output_fails(tmp_path: Path) -> None:
    ctx = _context(tmp_path)
    session = FakeSession(replies={"(start-my-repl)": Reply(value=None)})
    repl = build_repl_types(_custom())["My REPL"]

    assert not await repl.connect(ctx, session, repl.name, repl.connected)


@pytest.mark.anyio
async def test_custom_type_echoes_matching_lines(tmp_path: Path) -> None:
    ctx = _context(tmp_path)
    session = FakeSession(replies={"(start-my-repl)": Reply(out=("noise\n[build] compiled app\n", "READY\n"))})
    repl = build_repl_types(_custom(print_this_line_regexp="compiled"))["My REPL"]

    assert await repl.connect(ctx, session, repl.name, repl.connected)
    assert "[build] compiled app" in ctx.output.lines
    assert "noise" not in ctx.output.lines


@pytest.mark.anyio
async def test_custom_type_with_bad_pattern_fails_bootstrap(tmp_path: Path) -> None:
    ctx = _context(tmp_path)
    repl = build_repl_types(_custom(connected_regexp="("))["My REPL"]

    with pytest.raises(BootstrapFailed):
        await repl.connect(ctx, FakeSession(), repl.name, repl.connected)
