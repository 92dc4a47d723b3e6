"""Shared dataclasses used across the transport, evaluation and session modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .nrepl import NReplSession


class Stream(str, Enum):
    """Output stream an evaluation chunk arrived on."""

    STDOUT = "out"
    STDERR = "err"


@dataclass(frozen=True, slots=True)
class OutputChunk:
    """One ANSI-stripped piece of evaluation output, tagged with its stream."""

    stream: Stream
    text: str
    session_id: str | None = None


class ConnectionEventKind(str, Enum):
    """Reason a connection snapshot was published."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTION_LOST = "connection-lost"
    ROLES_CHANGED = "roles-changed"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class ConnectionSnapshot:
    """Read-only view of the connection state handed to subscribers."""

    event: ConnectionEventKind
    connecting: bool
    connected: bool
    hostname: str | None
    port: int | None
    clj: "NReplSession | None"
    cljs: "NReplSession | None"
    cljc: "NReplSession | None"
    cljs_type_name: str | None
    cljs_build: str | None
    project_dir: Path | None

    @property
    def cljc_role(self) -> str | None:
        """Name of the role the cljc session currently aliases."""

        if self.cljc is None:
            return None
        if self.cljs is not None and self.cljc is self.cljs:
            return "cljs"
        return "clj"


__all__ = ["ConnectionEventKind", "ConnectionSnapshot", "OutputChunk", "Stream"]
