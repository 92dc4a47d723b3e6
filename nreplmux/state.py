"""Mutable connection state owned by the session manager."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .models import ConnectionEventKind, ConnectionSnapshot
from .nrepl import NReplSession


@dataclass(slots=True)
class ConnectionState:
    """Current sessions, flags and selections for the single live connection.

    Only the session manager and the REPL types it drives mutate this; every
    other reader gets a :class:`ConnectionSnapshot`.
    """

    connecting: bool = False
    connected: bool = False
    hostname: str | None = None
    port: int | None = None
    clj: NReplSession | None = None
    cljs: NReplSession | None = None
    cljc: NReplSession | None = None
    cljs_type_name: str | None = None
    cljs_build: str | None = None
    project_dir: Path | None = None
    workspace_folder: Path | None = None

    def clear_sessions(self) -> None:
        self.clj = None
        self.cljs = None
        self.cljc = None

    def snapshot(self, event: ConnectionEventKind) -> ConnectionSnapshot:
        return ConnectionSnapshot(
            event=event,
            connecting=self.connecting,
            connected=self.connected,
            hostname=self.hostname,
            port=self.port,
            clj=self.clj,
            cljs=self.cljs,
            cljc=self.cljc,
            cljs_type_name=self.cljs_type_name,
            cljs_build=self.cljs_build,
            project_dir=self.project_dir,
        )


__all__ = ["ConnectionState"]
