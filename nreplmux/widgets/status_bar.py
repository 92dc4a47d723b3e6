"""Status bar widget that mirrors the nREPL connection."""

from __future__ import annotations

from typing import Callable

from textual.widgets import Static

from nreplmux.models import ConnectionSnapshot
from nreplmux.session import SessionManager


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self, session_manager: SessionManager) -> None:
        super().__init__("", id="status-bar")
        self._session_manager = session_manager
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: ConnectionSnapshot) -> None:
        self.update(describe_snapshot(state))


def describe_snapshot(state: ConnectionSnapshot) -> str:
    """One-line summary of a connection snapshot."""

    if state.connecting:
        return "nREPL: connecting…"
    if not state.connected:
        return "nREPL: disconnected"
    parts = [f"nREPL: {state.hostname}:{state.port}"]
    sessions = ["clj"]
    if state.cljs is not None:
        sessions.append("cljs")
    parts.append(f"Sessions: {', '.join(sessions)}")
    parts.append(f"cljc → {state.cljc_role or '—'}")
    if state.cljs_type_name:
        build = f" ({state.cljs_build})" if state.cljs_build else ""
        parts.append(f"cljs: {state.cljs_type_name}{build}")
    return " | ".join(parts)


__all__ = ["StatusBar", "describe_snapshot"]
