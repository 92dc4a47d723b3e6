"""Command palette providers for the connection commands."""

from __future__ import annotations

from typing import NamedTuple

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .session import SessionManager


class _Command(NamedTuple):
    label: str
    action: str
    help: str
    needs_connection: bool = False


_COMMANDS = (
    _Command("Connect to a running REPL server", "connect", "Pick a cljs REPL type and attach to an nREPL server."),
    _Command(
        "Reconnect with the last REPL type",
        "reattach",
        "Connect again, reusing the cljs REPL type picked last time.",
    ),
    _Command(
        "Toggle connecting on startup",
        "toggle_auto_connect",
        "Connect to the project's nREPL port automatically when the app starts.",
    ),
    _Command("Disconnect from the REPL server", "disconnect", "Close the nREPL connection.", True),
    _Command("Toggle the REPL used for cljc files", "toggle_cljc", "Switch the cljc role between clj and cljs.", True),
    _Command(
        "Recreate the ClojureScript REPL",
        "recreate_cljs",
        "Run the cljs REPL bring-up again on the current connection.",
        True,
    ),
)


class ConnectionCommandsProvider(Provider):
    """Expose connect/disconnect and session role commands to the command palette."""

    async def search(self, query: str) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        matcher = self.matcher(query)
        for command in self._available(manager):
            score = matcher.match(command.label)
            if score > 0:
                yield Hit(
                    score=score,
                    match_display=matcher.highlight(command.label),
                    command=self._build_callback(command.action),
                    text=command.label,
                    help=command.help,
                )

    async def discover(self) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        for command in self._available(manager):
            yield DiscoveryHit(
                display=command.label,
                command=self._build_callback(command.action),
                help=command.help,
            )

    @staticmethod
    def _available(manager: SessionManager) -> list[_Command]:
        connected = manager.state.connected
        return [command for command in _COMMANDS if connected or not command.needs_connection]

    @property
    def _session_manager(self) -> SessionManager | None:
        manager = getattr(self.app, "session_manager", None)
        if isinstance(manager, SessionManager):
            return manager
        return None

    def _build_callback(self, action: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            handler = getattr(self.app, f"action_{action}", None)
            if handler is None:
                return
            handler()

        return _run


__all__ = ["ConnectionCommandsProvider"]
