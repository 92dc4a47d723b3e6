"""Textual application entry point for nreplmux."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Callable, Sequence, TypeVar

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Footer, Header

from .config import AppConfig, load_config, save_config
from .models import ConnectionEventKind, ConnectionSnapshot
from .project import StaticWorkspace
from .providers import ConnectionCommandsProvider
from .services import SettingsStore
from .session import ClientFactory, SessionManager
from .settings import TomlSettingsStore
from .widgets import EvalPad, LogPane, PickManyScreen, PickOneScreen, StatusBar, TextPromptScreen

LOG = logging.getLogger(__name__)

_ResultT = TypeVar("_ResultT")


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for test overrides."""

    return load_config()


def _load_settings_store() -> SettingsStore:
    return TomlSettingsStore()


class NreplmuxApp(App[None]):
    """Terminal host for the nREPL session manager."""

    COMMANDS = App.COMMANDS | {ConnectionCommandsProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    #main-column {
        layout: vertical;
        width: 3fr;
        padding: 0 1;
        height: 1fr;
    }
    #connection-column {
        width: 2fr;
        min-width: 32;
        padding: 0 1;
        height: 1fr;
        border-left: solid $surface-darken-1;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+n", "connect", "Connect"),
        ("ctrl+d", "disconnect", "Disconnect"),
        ("ctrl+t", "toggle_cljc", "Toggle cljc"),
        ("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(
        self,
        *,
        document: Path | None = None,
        workspace_root: Path | None = None,
        auto_connect: bool | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        super().__init__()
        self._config = _load_app_config()
        if auto_connect is not None:
            self._config = self._config.with_auto_connect(auto_connect)
        self._output_log = LogPane("Output", id="output-log")
        self._connection_log = LogPane("Connection log", id="connection-log")
        self._session_manager = SessionManager(
            self,
            StaticWorkspace(document, workspace_root),
            config=self._config,
            settings=_load_settings_store(),
            output=self._output_log,
            connection_log=self._connection_log,
            client_factory=client_factory,
        )
        self._session_unsubscribe: Callable[[], None] | None = None
        self._pending_notifications: list[tuple[str, str]] = []
        self._install_session_listener()

    def compose(self) -> ComposeResult:
        """Compose the root layout."""

        yield Header(show_clock=True)
        main_column = Vertical(self._output_log, EvalPad(self._session_manager, self._output_log), id="main-column")
        connection_column = Vertical(self._connection_log, id="connection-column")
        yield Horizontal(main_column, connection_column, id="content")
        yield StatusBar(self._session_manager)
        yield Footer()

    async def on_mount(self) -> None:
        self._flush_pending_notifications()
        if self._config.auto_connect:
            self._start_connect(auto_connect=True)

    @property
    def session_manager(self) -> SessionManager:
        """Expose the session manager for tests."""

        return self._session_manager

    @property
    def config(self) -> AppConfig:
        return self._config

    def action_connect(self) -> None:
        self._start_connect()

    def action_reattach(self) -> None:
        self._start_connect(reattach=True)

    def action_disconnect(self) -> None:
        self._session_manager.disconnect()

    def action_toggle_cljc(self) -> None:
        self._session_manager.toggle_cljc_session()

    def action_recreate_cljs(self) -> None:
        self.run_worker(self._session_manager.recreate_cljs_repl(), group="connect", exclusive=True)

    def action_toggle_auto_connect(self) -> None:
        enabled = not self._config.auto_connect
        self.remember_auto_connect(enabled)
        self._safe_notify(f"Connect on startup {'enabled' if enabled else 'disabled'}.")

    def remember_auto_connect(self, enabled: bool) -> None:
        """Persist whether the app connects on startup."""

        if self._config.auto_connect == enabled:
            return
        self._config = self._config.with_auto_connect(enabled)
        self._session_manager.update_config(self._config)
        save_config(self._config)

    # Prompter

    async def prompt_text(self, prompt: str, *, placeholder: str = "", value: str = "") -> str | None:
        return await self._ask(TextPromptScreen(prompt, placeholder=placeholder, value=value))

    async def pick_one(
        self,
        values: Sequence[str],
        *,
        placeholder: str = "",
        selected: str | None = None,
    ) -> str | None:
        return await self._ask(PickOneScreen(values, placeholder=placeholder, selected=selected))

    async def pick_many(
        self,
        values: Sequence[str],
        *,
        placeholder: str = "",
        selected: Sequence[str] = (),
    ) -> list[str] | None:
        return await self._ask(PickManyScreen(values, placeholder=placeholder, selected=selected))

    def show_error(self, message: str) -> None:
        self._safe_notify(message, severity="error")

    async def _ask(self, screen: ModalScreen[_ResultT]) -> _ResultT | None:
        answer: asyncio.Future[_ResultT | None] = asyncio.get_running_loop().create_future()

        def _resolve(result: _ResultT | None) -> None:
            if not answer.done():
                answer.set_result(result)

        await self.push_screen(screen, callback=_resolve)
        return await answer

    def _start_connect(self, *, auto_connect: bool = False, reattach: bool = False) -> None:
        self.run_worker(
            self._connect(auto_connect=auto_connect, reattach=reattach),
            group="connect",
            exclusive=True,
        )

    async def _connect(self, *, auto_connect: bool, reattach: bool) -> None:
        connected = await self._session_manager.connect(auto_connect=auto_connect, reattach=reattach)
        LOG.info("Connect attempt finished", extra={"connected": connected})

    async def _shutdown(self) -> None:
        if self._session_unsubscribe:
            self._session_unsubscribe()
            self._session_unsubscribe = None
        self._session_manager.disconnect()
        await super()._shutdown()

    def _install_session_listener(self) -> None:
        if self._session_unsubscribe:
            self._session_unsubscribe()
        self._session_unsubscribe = self._session_manager.subscribe(self._handle_session_state)

    def _handle_session_state(self, state: ConnectionSnapshot) -> None:
        self._maybe_notify_state_change(state)

    def _maybe_notify_state_change(self, state: ConnectionSnapshot) -> None:
        if state.event is ConnectionEventKind.CONNECTED:
            self._safe_notify(f"Connected to nREPL at {state.hostname}:{state.port}.")
        elif state.event is ConnectionEventKind.CONNECTION_LOST:
            self._safe_notify("nREPL connection closed.", severity="warning")
        elif state.event is ConnectionEventKind.ROLES_CHANGED and state.cljc_role:
            self._safe_notify(f"cljc files use the {state.cljc_role} REPL.")

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display notification", extra={"notice": message})
        else:
            self._pending_notifications.append((message, severity))

    def _flush_pending_notifications(self) -> None:
        if not self._pending_notifications:
            return
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display queued notification", extra={"notice": message})


def main(argv: Sequence[str] | None = None) -> None:
    """Parse the command line and run the Textual application."""

    parser = argparse.ArgumentParser(prog="nreplmux", description="Connect to a running Clojure nREPL server.")
    parser.add_argument("--file", type=Path, help="document whose project to connect (the active file)")
    parser.add_argument("--workspace", type=Path, help="workspace folder containing the document")
    parser.add_argument(
        "--auto-connect",
        action="store_true",
        default=None,
        help="connect to the port in the project's port file on startup",
    )
    args = parser.parse_args(argv)
    document = args.file.resolve() if args.file else None
    workspace = args.workspace.resolve() if args.workspace else None
    NreplmuxApp(document=document, workspace_root=workspace, auto_connect=args.auto_connect).run()


if __name__ == "__main__":
    main()
