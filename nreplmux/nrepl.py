"""nREPL transport client and the logical sessions multiplexed over it."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from enum import Enum
from typing import Any, AsyncIterator, Callable, Protocol

from . import wire
from .models import OutputChunk, Stream

LOG = logging.getLogger(__name__)

_ANSI_PATTERN = re.compile(
    r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC ... BEL / ST
    r"|\x1b\[[0-?]*[ -/]*[@-~]"  # CSI
    r"|\x1b[@-Z\\-_]"
    r"|\x1b"
)


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from build-tool output."""

    return _ANSI_PATTERN.sub("", text)


class CloseReason(str, Enum):
    """Why a connection went away; passed to every close handler."""

    DELIBERATE = "deliberate"
    UNEXPECTED = "unexpected"


CloseHandler = Callable[["NReplClient", CloseReason], None]
OutputHandler = Callable[[str], None]


class NReplError(RuntimeError):
    """Base error for nREPL transport and session failures."""


class NReplConnectionError(NReplError):
    """Raised when the server is unreachable or the handshake fails."""


class ConnectionClosed(NReplError):
    """Raised when using a session whose connection has been closed."""


class ProtocolError(NReplError):
    """Raised when the server answers a session operation unexpectedly."""


class EvalError(NReplError):
    """Raised when the remote evaluation signals an exception."""

    def __init__(self, message: str, *, stderr: str = "", ex: str | None = None) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.ex = ex


class _PendingRequest(Protocol):
    def handle(self, message: dict[str, Any]) -> bool: ...

    def abort(self, exc: NReplError) -> None: ...


class _ResponseCollector:
    """Gathers every response to one request until the server reports done."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []
        self.future: asyncio.Future[list[dict[str, Any]]] = asyncio.get_running_loop().create_future()

    def handle(self, message: dict[str, Any]) -> bool:
        self.messages.append(message)
        status = message.get("status") or ()
        if "done" not in status:
            return False
        if not self.future.done():
            self.future.set_result(self.messages)
        return True

    def abort(self, exc: NReplError) -> None:
        if not self.future.done():
            self.future.set_exception(exc)


class EvalResult:
    """Pending evaluation: output streams in as it arrives, ``value`` resolves when done."""

    def __init__(
        self,
        session: "NReplSession",
        msg_id: str,
        *,
        on_stdout: OutputHandler | None = None,
        on_stderr: OutputHandler | None = None,
    ) -> None:
        self.id = msg_id
        self.session = session
        self.ns: str | None = None
        self.value: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()
        self._chunks: asyncio.Queue[OutputChunk | None] = asyncio.Queue()
        self._handlers: dict[Stream, OutputHandler | None] = {
            Stream.STDOUT: on_stdout,
            Stream.STDERR: on_stderr,
        }
        self._last_value: str | None = None
        self._ex: str | None = None
        self._stderr: list[str] = []
        self._failed = False

    def handle(self, message: dict[str, Any]) -> bool:
        session_id = message.get("session", self.session.id)
        for stream in Stream:
            text = message.get(stream.value)
            if isinstance(text, str):
                self._emit(OutputChunk(stream, strip_ansi(text), session_id))
        if "value" in message:
            self._last_value = str(message["value"])
        if "ns" in message:
            self.ns = str(message["ns"])
        if "ex" in message:
            self._ex = str(message["ex"])
        status = message.get("status") or ()
        if "eval-error" in status or "unknown-session" in status:
            self._failed = True
        if "done" not in status:
            return False
        self._finish()
        return True

    def abort(self, exc: NReplError) -> None:
        self._chunks.put_nowait(None)
        if not self.value.done():
            self.value.set_exception(exc)

    async def output(self) -> AsyncIterator[OutputChunk]:
        """Yield output chunks in arrival order until the evaluation finishes."""

        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                # Leave the sentinel for any later iteration.
                self._chunks.put_nowait(None)
                return
            yield chunk

    def _emit(self, chunk: OutputChunk) -> None:
        if chunk.stream is Stream.STDERR:
            self._stderr.append(chunk.text)
        self._chunks.put_nowait(chunk)
        handler = self._handlers[chunk.stream]
        if handler is None:
            return
        try:
            handler(chunk.text)
        except Exception:
            LOG.exception("Output handler failed", extra={"nrepl_id": self.id})

    def _finish(self) -> None:
        self._chunks.put_nowait(None)
        if self.value.done():
            return
        if self._failed or self._ex:
            stderr = "".join(self._stderr)
            message = self._ex or "Evaluation failed"
            self.value.set_exception(EvalError(message, stderr=stderr, ex=self._ex))
        else:
            self.value.set_result(self._last_value)


class NReplSession:
    """One logical nREPL session bound to a client connection."""

    def __init__(self, client: "NReplClient", session_id: str) -> None:
        self._client = client
        self._id = session_id

    @property
    def id(self) -> str:
        return self._id

    @property
    def client(self) -> "NReplClient":
        return self._client

    async def eval(
        self,
        code: str,
        *,
        on_stdout: OutputHandler | None = None,
        on_stderr: OutputHandler | None = None,
        ns: str | None = None,
    ) -> EvalResult:
        """Submit ``code`` for evaluation on this session."""

        if self._client.closed:
            raise ConnectionClosed(f"Session {self._id} belongs to a closed connection")
        msg_id = _new_id()
        result = EvalResult(self, msg_id, on_stdout=on_stdout, on_stderr=on_stderr)
        message: dict[str, Any] = {"op": "eval", "code": code, "session": self._id, "id": msg_id}
        if ns:
            message["ns"] = ns
        await self._client.send(message, result)
        return result

    async def clone(self) -> "NReplSession":
        """Create a sibling session on the same connection."""

        return await self._client.clone(self)

    def __repr__(self) -> str:
        return f"NReplSession(id={self._id!r})"


class NReplClient:
    """Owns one socket to an nREPL server and demultiplexes its responses."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        host: str,
        port: int,
    ) -> None:
        self.host = host
        self.port = port
        self.session: NReplSession | None = None
        self._reader = reader
        self._writer = writer
        self._pending: dict[str, _PendingRequest] = {}
        self._close_handlers: list[CloseHandler] = []
        self._closed = False
        self._reader_task: asyncio.Task[None] | None = None

    @classmethod
    async def create(cls, host: str, port: int) -> "NReplClient":
        """Connect and clone the default session used as the client's base session."""

        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as exc:
            raise NReplConnectionError(f"Failed to connect to {host}:{port}: {exc}") from exc
        client = cls(reader, writer, host=host, port=port)
        client.start()
        try:
            client.session = await client.clone()
        except NReplError as exc:
            client.close(CloseReason.DELIBERATE)
            raise NReplConnectionError(f"nREPL handshake with {host}:{port} failed: {exc}") from exc
        except BaseException:
            client.close(CloseReason.DELIBERATE)
            raise
        LOG.info("Connected to nREPL", extra={"host": host, "port": port})
        return client

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Begin reading responses from the socket."""

        if self._reader_task is None:
            self._reader_task = asyncio.get_running_loop().create_task(
                self._read_loop(),
                name=f"nreplmux-reader-{self.host}:{self.port}",
            )

    def on_close(self, handler: CloseHandler) -> None:
        """Register a handler invoked once when the connection closes."""

        self._close_handlers.append(handler)

    async def clone(self, parent: NReplSession | None = None) -> NReplSession:
        """Ask the server for a new session, optionally cloned from ``parent``."""

        message: dict[str, Any] = {"op": "clone"}
        if parent is not None:
            message["session"] = parent.id
        responses = await self.request(message)
        for response in responses:
            new_session = response.get("new-session")
            if isinstance(new_session, str) and new_session:
                return NReplSession(self, new_session)
        statuses = [status for response in responses for status in response.get("status") or ()]
        raise ProtocolError(f"Server refused to clone a session (status: {', '.join(statuses) or 'none'})")

    async def request(self, message: dict[str, Any]) -> list[dict[str, Any]]:
        """Send a raw message and collect its responses until done."""

        collector = _ResponseCollector()
        await self.send(message, collector)
        return await collector.future

    async def send(self, message: dict[str, Any], pending: _PendingRequest) -> None:
        if self._closed:
            raise ConnectionClosed(f"Connection to {self.host}:{self.port} is closed")
        msg_id = message.setdefault("id", _new_id())
        self._pending[msg_id] = pending
        try:
            self._writer.write(wire.encode(message))
            await self._writer.drain()
        except OSError as exc:
            self._pending.pop(msg_id, None)
            self._shutdown(CloseReason.UNEXPECTED)
            raise ConnectionClosed(f"Lost connection to {self.host}:{self.port}: {exc}") from exc

    def close(self, reason: CloseReason = CloseReason.DELIBERATE) -> None:
        """Close the socket; safe to call more than once."""

        if self._closed:
            return
        task = self._reader_task
        if task is not None and not task.done():
            task.cancel()
        self._shutdown(reason)

    async def _read_loop(self) -> None:
        try:
            while True:
                message = await wire.read_message(self._reader)
                self._dispatch(message)
        except (asyncio.IncompleteReadError, OSError):
            LOG.info("nREPL connection dropped", extra={"host": self.host, "port": self.port})
        except (wire.BencodeError, asyncio.LimitOverrunError):
            LOG.exception("Malformed nREPL frame", extra={"host": self.host, "port": self.port})
        self._shutdown(CloseReason.UNEXPECTED)

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            LOG.warning("Ignoring non-dict nREPL message", extra={"payload": repr(message)[:200]})
            return
        msg_id = message.get("id")
        pending = self._pending.get(msg_id) if isinstance(msg_id, str) else None
        if pending is None:
            LOG.debug("Unsolicited nREPL message", extra={"nrepl_id": msg_id})
            return
        if pending.handle(message):
            self._pending.pop(msg_id, None)

    def _shutdown(self, reason: CloseReason) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            request.abort(ConnectionClosed(f"Connection to {self.host}:{self.port} closed"))
        for handler in tuple(self._close_handlers):
            try:
                handler(self, reason)
            except Exception:
                LOG.exception("Close handler failed", extra={"host": self.host, "port": self.port})


def _new_id() -> str:
    return str(uuid.uuid4())


__all__ = [
    "CloseReason",
    "ConnectionClosed",
    "EvalError",
    "EvalResult",
    "NReplClient",
    "NReplConnectionError",
    "NReplError",
    "NReplSession",
    "ProtocolError",
    "strip_ansi",
]
