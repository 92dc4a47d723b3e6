"""ClojureScript REPL types: how to start and attach a cljs REPL for each build tool."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Iterator, NamedTuple

from .config import AppConfig, CustomCljsReplConfig
from .evaluation import OutputProcessor, SuccessPredicate, eval_connect_code
from .nrepl import NReplSession
from .project import ManifestError, figwheel_main_projects, shadow_builds
from .services import LogSink, Prompter, SettingsStore, quick_pick_multi, quick_pick_single
from .settings import CLJS_REPL_TYPE_HAS_BUILDS
from .state import ConnectionState

LOG = logging.getLogger(__name__)

FIGWHEEL_MAIN = "Figwheel Main"
FIGWHEEL = "Figwheel"
SHADOW_CLJS = "shadow-cljs"

FIGWHEEL_START_CODE = (
    "(do (use 'figwheel-sidecar.repl-api)"
    " (if (not (figwheel-sidecar.repl-api/figwheel-running?))"
    " (figwheel-sidecar.repl-api/start-figwheel!))"
    " (figwheel-sidecar.repl-api/cljs-repl))"
)
_FIGWHEEL_SERVER_PATTERN = re.compile(r"Figwheel: Starting server at (.*)")
_PROMPT_WILL_SHOW = "Prompt will show"
_CLJS_QUIT_HINT = "To quit, type: :cljs/quit"


class ConnectAborted(RuntimeError):
    """Raised when the user dismisses a prompt or there is nothing to connect to."""


class BootstrapFailed(RuntimeError):
    """Raised when a start or connect step completed but did not report success."""


class ReplTypeContext(NamedTuple):
    """Collaborators a REPL type needs while starting or connecting."""

    state: ConnectionState
    prompter: Prompter
    settings: SettingsStore
    output: LogSink
    connection_log: LogSink
    config: AppConfig
    open_url: Callable[[str], Any]


ConnectFn = Callable[[ReplTypeContext, NReplSession, str, SuccessPredicate], Awaitable[bool]]


@dataclass(frozen=True, slots=True)
class ReplType:
    """Strategy bundle for one ClojureScript REPL type."""

    name: str
    connect: ConnectFn
    connected: SuccessPredicate
    start: ConnectFn | None = None
    started: SuccessPredicate | None = None

    def __post_init__(self) -> None:
        if (self.start is None) != (self.started is None):
            raise ValueError(f"REPL type '{self.name}' needs both start and started, or neither")

    @property
    def has_start(self) -> bool:
        return self.start is not None


class ReplTypeRegistry(Mapping[str, ReplType]):
    """Name to REPL type mapping; the first type registered under a name wins."""

    def __init__(self, types: Iterable[ReplType]) -> None:
        self._types: dict[str, ReplType] = {}
        for repl_type in types:
            if repl_type.name in self._types:
                LOG.warning("Ignoring duplicate REPL type", extra={"repl_type": repl_type.name})
                continue
            self._types[repl_type.name] = repl_type

    def __getitem__(self, name: str) -> ReplType:
        return self._types[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def names(self) -> list[str]:
        return list(self._types)


def build_repl_types(custom: CustomCljsReplConfig | None = None) -> ReplTypeRegistry:
    """Built-in REPL types followed by the configured custom type, if any."""

    types = list(BUILTIN_REPL_TYPES)
    if custom is not None:
        types.append(custom_repl_type(custom))
    return ReplTypeRegistry(types)


def _project_dir(ctx: ReplTypeContext) -> Path:
    if ctx.state.project_dir is None:
        raise ConnectAborted("No project root has been resolved. Connect manually first.")
    return ctx.state.project_dir


def _remember_has_builds(ctx: ReplTypeContext, has_builds: bool, build: str | None) -> None:
    ctx.settings.update(ctx.state.project_dir, CLJS_REPL_TYPE_HAS_BUILDS, has_builds)
    ctx.state.cljs_build = build


def _any_contains(lines: Iterable[str], needle: str) -> bool:
    return any(needle in line for line in lines)


# Figwheel Main


def _figwheel_main_builds(ctx: ReplTypeContext) -> list[str]:
    projects = figwheel_main_projects(_project_dir(ctx))
    if not projects:
        message = "There are no figwheel project files (.cljs.edn) in the project directory."
        ctx.prompter.show_error(message)
        ctx.output.append_line(message)
        raise ConnectAborted("Connection to Figwheel Main aborted.")
    return projects


async def _start_figwheel_main(
    ctx: ReplTypeContext,
    session: NReplSession,
    name: str,
    check: SuccessPredicate,
) -> bool:
    projects = _figwheel_main_builds(ctx)
    if len(projects) <= 1:
        builds: list[str] | None = projects
    else:
        builds = await quick_pick_multi(
            ctx.prompter,
            ctx.settings,
            ctx.state.project_dir,
            projects,
            placeholder="Please select which builds to start",
            save_as="figwheel-main-projects",
        )
    if not builds:
        raise ConnectAborted("Connection to Figwheel Main aborted.")
    _remember_has_builds(ctx, True, builds[0])
    quoted = " ".join(f'"{build}"' for build in builds)
    code = f"(do (require 'figwheel.main.api) (figwheel.main.api/start {quoted}))"
    return await eval_connect_code(session, code, name, check, connection_log=ctx.connection_log)


def _figwheel_main_started(_value: str | None, out: Iterable[str], err: Iterable[str]) -> bool:
    # "already running" means the build is up, which is all start needs.
    return _any_contains(out, _PROMPT_WILL_SHOW) or _any_contains(err, "already running")


async def _connect_figwheel_main(
    ctx: ReplTypeContext,
    session: NReplSession,
    name: str,
    check: SuccessPredicate,
) -> bool:
    build = await quick_pick_single(
        ctx.prompter,
        ctx.settings,
        ctx.state.project_dir,
        _figwheel_main_builds(ctx),
        placeholder="Select which build to connect to",
        save_as="figwheel-main-build",
    )
    if build is None:
        raise ConnectAborted("Connection aborted.")
    _remember_has_builds(ctx, True, build)
    code = f"(do (use 'figwheel.main.api) (figwheel.main.api/cljs-repl \"{build}\"))"
    return await eval_connect_code(session, code, name, check, connection_log=ctx.connection_log)


def _figwheel_main_connected(_value: str | None, out: Iterable[str], _err: Iterable[str]) -> bool:
    return _any_contains(out, _CLJS_QUIT_HINT)


# Figwheel (figwheel-sidecar)


def figwheel_server_watcher(ctx: ReplTypeContext) -> OutputProcessor:
    """Announce the Figwheel server address and open it in a browser, once."""

    announced = False

    def _watch(output: str) -> None:
        nonlocal announced
        if announced:
            return
        matched = _FIGWHEEL_SERVER_PATTERN.search(output)
        if matched is None:
            return
        announced = True
        ctx.output.append_line(matched.group(0).strip())
        if ctx.config.open_browser_when_figwheel_started:
            ctx.output.append_line(
                "Opening Figwheel app in the browser (this automatic behaviour can be disabled using Settings) ..."
            )
            try:
                ctx.open_url(matched.group(1).strip())
            except Exception:
                LOG.exception("Error opening Figwheel app in browser", extra={"url": matched.group(1)})
        else:
            ctx.output.append_line(
                "Not automatically opening Figwheel app in the browser (this can be enabled using Settings)."
            )
        ctx.output.append_line(
            "The CLJS REPL session will be connected when the Figwheel app has been started in the browser."
        )

    return _watch


async def _connect_figwheel(
    ctx: ReplTypeContext,
    session: NReplSession,
    name: str,
    check: SuccessPredicate,
) -> bool:
    _remember_has_builds(ctx, False, None)
    return await eval_connect_code(
        session,
        FIGWHEEL_START_CODE,
        name,
        check,
        [figwheel_server_watcher(ctx)],
        connection_log=ctx.connection_log,
    )


def _figwheel_connected(_value: str | None, out: Iterable[str], _err: Iterable[str]) -> bool:
    return _any_contains(out, _PROMPT_WILL_SHOW)


# shadow-cljs


def shadow_cljs_repl_start(build: str) -> str | None:
    """Code selecting a shadow-cljs build (``:app``) or pseudo build (``node-repl``)."""

    if not build:
        return None
    if build.startswith(":"):
        return f"(shadow.cljs.devtools.api/nrepl-select {build})"
    return f"(shadow.cljs.devtools.api/{build})"


async def _connect_shadow_cljs(
    ctx: ReplTypeContext,
    session: NReplSession,
    name: str,
    check: SuccessPredicate,
) -> bool:
    try:
        builds = shadow_builds(_project_dir(ctx))
    except ManifestError as exc:
        ctx.output.append_line(str(exc))
        raise ConnectAborted("Connection to shadow-cljs aborted.") from exc
    build = await quick_pick_single(
        ctx.prompter,
        ctx.settings,
        ctx.state.project_dir,
        builds,
        placeholder="Select which build to connect to",
        save_as="shadow-cljs-build",
    )
    code = shadow_cljs_repl_start(build or "")
    if build is None or code is None:
        raise ConnectAborted("Connection aborted.")
    _remember_has_builds(ctx, True, build)
    return await eval_connect_code(session, code, name, check, connection_log=ctx.connection_log)


def _shadow_cljs_connected(value: str | None, _out: Iterable[str], _err: Iterable[str]) -> bool:
    return value is not None and ":selected" in value


# Custom


def custom_repl_type(custom: CustomCljsReplConfig) -> ReplType:
    """Materialize a REPL type from the declarative custom template."""

    async def _connect(
        ctx: ReplTypeContext,
        session: NReplSession,
        name: str,
        check: SuccessPredicate,
    ) -> bool:
        _remember_has_builds(ctx, False, None)
        processors: list[OutputProcessor] = []
        try:
            if custom.tell_user_to_start_regexp:
                processors.append(_tell_user_to_start(ctx, re.compile(custom.tell_user_to_start_regexp)))
            if custom.print_this_line_regexp:
                processors.append(_echo_matching_lines(ctx, re.compile(f".*({custom.print_this_line_regexp}).*")))
            re.compile(custom.connected_regexp)
        except re.error as exc:
            raise BootstrapFailed(f"Invalid regular expression in custom REPL type '{custom.name}': {exc}") from exc
        return await eval_connect_code(
            session,
            custom.start_code,
            name,
            check,
            processors,
            connection_log=ctx.connection_log,
        )

    def _connected(_value: str | None, out: Iterable[str], _err: Iterable[str]) -> bool:
        return any(re.search(custom.connected_regexp, line) for line in out)

    return ReplType(name=custom.name, connect=_connect, connected=_connected)


def _tell_user_to_start(ctx: ReplTypeContext, pattern: re.Pattern[str]) -> OutputProcessor:
    told = False

    def _process(output: str) -> None:
        nonlocal told
        if told or pattern.search(output) is None:
            return
        told = True
        ctx.output.append_line("CLJS REPL ready to connect. Please, start your ClojureScript app.")
        ctx.output.append_line("  The CLJS REPL will connect when your app is running.")

    return _process


def _echo_matching_lines(ctx: ReplTypeContext, pattern: re.Pattern[str]) -> OutputProcessor:
    def _process(output: str) -> None:
        for matched in pattern.finditer(output):
            ctx.output.append_line(matched.group(0))

    return _process


BUILTIN_REPL_TYPES: tuple[ReplType, ...] = (
    ReplType(
        name=FIGWHEEL_MAIN,
        start=_start_figwheel_main,
        started=_figwheel_main_started,
        connect=_connect_figwheel_main,
        connected=_figwheel_main_connected,
    ),
    ReplType(
        name=FIGWHEEL,
        connect=_connect_figwheel,
        connected=_figwheel_connected,
    ),
    ReplType(
        name=SHADOW_CLJS,
        connect=_connect_shadow_cljs,
        connected=_shadow_cljs_connected,
    ),
)


__all__ = [
    "BUILTIN_REPL_TYPES",
    "BootstrapFailed",
    "ConnectAborted",
    "FIGWHEEL",
    "FIGWHEEL_MAIN",
    "ReplType",
    "ReplTypeContext",
    "ReplTypeRegistry",
    "SHADOW_CLJS",
    "build_repl_types",
    "custom_repl_type",
    "figwheel_server_watcher",
    "shadow_cljs_repl_start",
]
