"""Connection orchestrator: nREPL connect, Clojure session bring-up and ClojureScript bootstrap."""

from __future__ import annotations

import logging
import webbrowser
from typing import Any, Awaitable, Callable

from .config import AppConfig
from .models import ConnectionEventKind, ConnectionSnapshot
from .nrepl import CloseReason, ConnectionClosed, EvalResult, NReplClient, NReplError, NReplSession, OutputHandler
from .project import NoOpenDocument, nrepl_port_file, port_file_for, read_port_file, resolve_project_root
from .repl_types import BootstrapFailed, ConnectAborted, ReplTypeContext, ReplTypeRegistry, build_repl_types
from .services import LoggingSink, LogSink, Prompter, SettingsStore, Workspace, quick_pick_single
from .settings import CLJS_REPL_TYPE, SELECTED_CLJS_TYPE, MemorySettingsStore
from .state import ConnectionState

LOG = logging.getLogger(__name__)

CLJS_PROJECT_TYPE_NONE = "Don't load any cljs support, thanks"

SessionListener = Callable[[ConnectionSnapshot], None]
ClientFactory = Callable[[str, int], Awaitable[NReplClient]]


class InvalidAddress(ValueError):
    """Raised when a ``host:port`` string does not name a usable nREPL address."""


def parse_port(text: str) -> int:
    """Parse a port number in the range 1-65535."""

    try:
        port = int(text.strip())
    except ValueError as exc:
        raise InvalidAddress(f"Bad port: {text}") from exc
    if not 0 < port < 65536:
        raise InvalidAddress(f"Bad port: {text}")
    return port


def parse_address(text: str, default_host: str = "localhost") -> tuple[str, int]:
    """Split ``host:port``; a bare port or ``:port`` uses ``default_host``."""

    host, sep, port_text = text.strip().rpartition(":")
    if not sep:
        host, port_text = "", text
    try:
        port = parse_port(port_text)
    except InvalidAddress as exc:
        raise InvalidAddress(f"Bad url: {text}") from exc
    return host.strip() or default_host, port


class SessionManager:
    """Owns the nREPL connection and the clj/cljs/cljc session roles."""

    def __init__(
        self,
        prompter: Prompter,
        workspace: Workspace,
        *,
        config: AppConfig | None = None,
        settings: SettingsStore | None = None,
        output: LogSink | None = None,
        connection_log: LogSink | None = None,
        client_factory: ClientFactory | None = None,
        open_url: Callable[[str], Any] | None = None,
    ) -> None:
        self._prompter = prompter
        self._workspace = workspace
        self._config = config or AppConfig()
        self._settings = settings or MemorySettingsStore()
        self._output = output or LoggingSink(LOG)
        self._connection_log = connection_log or LoggingSink(logging.getLogger(f"{__name__}.connection"))
        self._client_factory = client_factory or NReplClient.create
        self._open_url = open_url or webbrowser.open
        self._state = ConnectionState()
        self._client: NReplClient | None = None
        self._listeners: set[SessionListener] = set()

    @property
    def state(self) -> ConnectionSnapshot:
        """Read-only snapshot of the current connection state."""

        return self._state.snapshot(self._current_event())

    @property
    def client(self) -> NReplClient | None:
        """The live nREPL client, if any."""

        return self._client

    @property
    def config(self) -> AppConfig:
        return self._config

    def update_config(self, config: AppConfig) -> None:
        """Use ``config`` for subsequent connect attempts."""

        self._config = config

    def repl_types(self) -> ReplTypeRegistry:
        """REPL types available for the next attempt (built-ins plus custom)."""

        return build_repl_types(self._config.custom_cljs_repl)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to connection updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        listener(self.state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def connect(self, *, auto_connect: bool = False, reattach: bool = False) -> bool:
        """Run a full connect attempt.

        A manual attempt resolves the project root from the active document and
        asks for the ClojureScript REPL type; ``reattach`` reuses the type picked
        last time for this project. ``auto_connect`` connects straight to the
        port found in the project's port file instead of confirming the address.
        """

        state = self._state
        repl_types = self.repl_types()
        LOG.info("Connect initiated", extra={"auto_connect": auto_connect, "reattach": reattach})
        if reattach:
            cljs_type_name = str(self._settings.get(state.project_dir, SELECTED_CLJS_TYPE) or "")
        else:
            if not (auto_connect and state.project_dir is not None):
                try:
                    state.project_dir, state.workspace_folder = resolve_project_root(self._workspace)
                except NoOpenDocument as exc:
                    self._prompter.show_error(str(exc))
                    self._output.append_line(str(exc))
                    LOG.info("Connect interrupted", extra={"reason": "no-document"})
                    return False
            picked = await quick_pick_single(
                self._prompter,
                self._settings,
                state.project_dir,
                [CLJS_PROJECT_TYPE_NONE, *repl_types.names()],
                placeholder="If you want ClojureScript support, please select a cljs project type",
                save_as="connect-cljs-type",
                auto_select=True,
            )
            if picked is None:
                LOG.info("Connect interrupted", extra={"reason": "no-cljs-type"})
                return False
            cljs_type_name = "" if picked == CLJS_PROJECT_TYPE_NONE else picked

        self._settings.update(state.project_dir, SELECTED_CLJS_TYPE, cljs_type_name)
        state.connecting = True
        self._notify(ConnectionEventKind.CONNECTING)

        port = read_port_file(nrepl_port_file(state.project_dir, port_file_for(cljs_type_name)))
        if port and auto_connect:
            try:
                port_number = parse_port(port)
            except InvalidAddress as exc:
                self._output.append_line(str(exc))
                self._abort_attempt()
                return False
            return await self.connect_to_host(self._config.default_host, port_number, cljs_type_name, repl_types)
        if port == "":
            self._output.append_line("The nREPL port file is empty.")
        return await self._prompt_for_address_and_connect(port or None, cljs_type_name, repl_types)

    async def connect_to_host(
        self,
        hostname: str,
        port: int,
        cljs_type_name: str = "",
        repl_types: ReplTypeRegistry | None = None,
    ) -> bool:
        """Connect to ``hostname:port``, bind the clj session and bring up cljs if requested."""

        repl_types = repl_types if repl_types is not None else self.repl_types()
        state = self._state
        previous, self._client = self._client, None
        if previous is not None:
            previous.close(CloseReason.DELIBERATE)
        state.clear_sessions()
        state.connected = False
        state.connecting = True
        state.hostname = hostname
        state.port = port
        self._notify(ConnectionEventKind.CONNECTING)

        self._output.append_line("Hooking up nREPL sessions...")
        try:
            client = await self._client_factory(hostname, port)
        except NReplError as exc:
            state.connecting = False
            self._output.append_line(f"Failed connecting. ({exc})")
            LOG.warning("Failed connecting", extra={"host": hostname, "port": port, "error": str(exc)})
            self._notify(ConnectionEventKind.DISCONNECTED)
            return False
        clj = client.session
        if clj is None:
            client.close(CloseReason.DELIBERATE)
            state.connecting = False
            self._output.append_line("Failed connecting. (no base session)")
            self._notify(ConnectionEventKind.DISCONNECTED)
            return False

        self._client = client
        client.on_close(self._handle_connection_closed)
        state.clj = clj
        state.cljc = clj
        state.connected = True
        state.connecting = False
        self._output.append_line("Connected session: clj")
        LOG.info("Connected clj session", extra={"host": hostname, "port": port, "session": clj.id})
        self._notify(ConnectionEventKind.CONNECTED)

        cljs = None
        if cljs_type_name:
            cljs = await self._bring_up_cljs(clj, cljs_type_name, repl_types)
        self._output.append_line(
            "cljc files will use the clj REPL." + (" (You can toggle this at will.)" if cljs else "")
        )
        return True

    def disconnect(self) -> None:
        """Drop every session role and close the connection; safe to repeat."""

        state = self._state
        state.clear_sessions()
        state.connected = False
        state.connecting = False
        client, self._client = self._client, None
        if client is not None:
            client.close(CloseReason.DELIBERATE)
            self._output.append_line("Disconnected from nREPL.")
        self._notify(ConnectionEventKind.DISCONNECTED)

    def toggle_cljc_session(self) -> None:
        """Switch the cljc role between the clj and cljs sessions."""

        state = self._state
        if not state.connected or state.cljs is None:
            return
        if state.cljc is state.cljs:
            state.cljc = state.clj
        elif state.cljc is state.clj:
            state.cljc = state.cljs
        else:
            return
        self._notify(ConnectionEventKind.ROLES_CHANGED)

    async def recreate_cljs_repl(self) -> bool:
        """Repeat only the ClojureScript bring-up with the previously selected REPL type."""

        state = self._state
        if not state.connected or state.clj is None:
            self._output.append_line("Not connected to an nREPL server.")
            return False
        cljs_type_name = str(self._settings.get(state.project_dir, SELECTED_CLJS_TYPE) or "")
        if not cljs_type_name:
            self._output.append_line("No ClojureScript REPL type selected. Connect again and pick one.")
            return False
        session = await self._bring_up_cljs(state.clj, cljs_type_name, self.repl_types())
        return session is not None

    async def evaluate(
        self,
        code: str,
        *,
        role: str = "cljc",
        on_stdout: OutputHandler | None = None,
        on_stderr: OutputHandler | None = None,
    ) -> EvalResult:
        """Evaluate ``code`` on the session currently bound to ``role``."""

        session = getattr(self._state, role, None) if role in ("clj", "cljs", "cljc") else None
        if session is None:
            raise ConnectionClosed(f"No {role} session is connected")
        return await session.eval(code, on_stdout=on_stdout, on_stderr=on_stderr)

    async def _prompt_for_address_and_connect(
        self,
        port: str | None,
        cljs_type_name: str,
        repl_types: ReplTypeRegistry,
    ) -> bool:
        url = await self._prompter.prompt_text(
            "Add port to nREPL if localhost, otherwise 'hostname:port'",
            placeholder="Enter existing nREPL hostname:port here...",
            value=f"{self._config.default_host}:{port or ''}",
        )
        if url is None:
            self._abort_attempt()
            return False
        try:
            hostname, port_number = parse_address(url, self._config.default_host)
        except InvalidAddress as exc:
            self._output.append_line(str(exc))
            self._abort_attempt()
            return False
        return await self.connect_to_host(hostname, port_number, cljs_type_name, repl_types)

    async def _bring_up_cljs(
        self,
        clj: NReplSession,
        cljs_type_name: str,
        repl_types: ReplTypeRegistry,
    ) -> NReplSession | None:
        state = self._state
        try:
            session = await self._make_cljs_session(clj, cljs_type_name, repl_types)
        except (ConnectAborted, BootstrapFailed) as exc:
            state.cljs_build = None
            self._output.append_line(str(exc))
            return None
        except NReplError as exc:
            state.cljs_build = None
            self._output.append_line(f"Error while connecting cljs REPL: {exc}")
            LOG.warning("cljs bring-up failed", extra={"repl_type": cljs_type_name, "error": str(exc)})
            return None
        if state.clj is not clj:
            # The connection went away while the build was compiling.
            return None
        previous = state.cljs
        state.cljs = session
        if previous is not None and state.cljc is previous:
            state.cljc = session
        self._output.append_line("Connected session: cljs")
        LOG.info("Connected cljs session", extra={"repl_type": cljs_type_name, "session": session.id})
        self._notify(ConnectionEventKind.ROLES_CHANGED)
        return session

    async def _make_cljs_session(
        self,
        clj: NReplSession,
        cljs_type_name: str,
        repl_types: ReplTypeRegistry,
    ) -> NReplSession:
        state = self._state
        repl = repl_types.get(cljs_type_name)
        if repl is None:
            raise BootstrapFailed(f"Unknown ClojureScript REPL type: {cljs_type_name}")
        self._output.append_line("Creating cljs repl session...")
        session = await clj.clone()
        state.cljs_type_name = cljs_type_name
        self._settings.update(state.project_dir, CLJS_REPL_TYPE, cljs_type_name)
        ctx = self._repl_context()
        if repl.has_start:
            assert repl.start is not None and repl.started is not None  # has_start guarantees both
            self._output.append_line(f"Starting repl for: {repl.name}...")
            if not await repl.start(ctx, session, repl.name, repl.started):
                raise BootstrapFailed("Failed starting cljs repl")
            self._output.append_line("Started cljs builds")
            session = await clj.clone()
        self._output.append_line(f"Connecting CLJS repl: {repl.name}...")
        self._output.append_line("  Compiling and stuff. This can take a minute or two.")
        self._output.append_line("  See the connection log for detailed progress updates.")
        if await repl.connect(ctx, session, repl.name, repl.connected):
            return session
        build = state.cljs_build
        suffix = f" for build: {build}" if build else ""
        raise BootstrapFailed(
            f"Failed starting cljs repl{suffix}. Is the build running and connected?\n"
            "   See the connection log for any hints on what went wrong."
        )

    def _repl_context(self) -> ReplTypeContext:
        return ReplTypeContext(
            state=self._state,
            prompter=self._prompter,
            settings=self._settings,
            output=self._output,
            connection_log=self._connection_log,
            config=self._config,
            open_url=self._open_url,
        )

    def _handle_connection_closed(self, client: NReplClient, reason: CloseReason) -> None:
        if client is not self._client:
            return
        self._client = None
        state = self._state
        state.clear_sessions()
        state.connected = False
        state.connecting = False
        LOG.info("nREPL connection closed", extra={"reason": reason.value})
        if reason is CloseReason.UNEXPECTED:
            self._output.append_line("nREPL Connection was closed")
            self._notify(ConnectionEventKind.CONNECTION_LOST)
        else:
            self._notify(ConnectionEventKind.DISCONNECTED)

    def _abort_attempt(self) -> None:
        self._state.connecting = False
        self._notify(ConnectionEventKind.ABORTED)

    def _current_event(self) -> ConnectionEventKind:
        if self._state.connecting:
            return ConnectionEventKind.CONNECTING
        if self._state.connected:
            return ConnectionEventKind.CONNECTED
        return ConnectionEventKind.DISCONNECTED

    def _notify(self, event: ConnectionEventKind) -> None:
        snapshot = self._state.snapshot(event)
        for listener in tuple(self._listeners):
            listener(snapshot)


__all__ = [
    "CLJS_PROJECT_TYPE_NONE",
    "ClientFactory",
    "InvalidAddress",
    "SessionManager",
    "parse_address",
    "parse_port",
]
