"""Scripted stand-ins for the nREPL client and the editor collaborators."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Sequence

from nreplmux.models import OutputChunk, Stream
from nreplmux.nrepl import CloseReason, NReplError, ProtocolError


@dataclass(frozen=True)
class Reply:
    """What a fake session answers for an evaluated form."""

    out: tuple[str, ...] = ()
    err: tuple[str, ...] = ()
    value: str | None = "nil"
    error: NReplError | None = None


class FakeEval:
    def __init__(self, session_id: str, reply: Reply) -> None:
        self._chunks = [OutputChunk(Stream.STDOUT, text, session_id) for text in reply.out]
        self._chunks += [OutputChunk(Stream.STDERR, text, session_id) for text in reply.err]
        self.ns: str | None = None
        self.value: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()
        if reply.error is not None:
            self.value.set_exception(reply.error)
        else:
            self.value.set_result(reply.value)

    async def output(self) -> AsyncIterator[OutputChunk]:
        for chunk in self._chunks:
            yield chunk


class FakeSession:
    """Session answering evals from ``replies``: the first key found in the code wins."""

    def __init__(
        self,
        session_id: str = "s1",
        replies: dict[str, Reply] | None = None,
        *,
        fail_clone: bool = False,
    ) -> None:
        self.id = session_id
        self.replies = replies if replies is not None else {}
        self.fail_clone = fail_clone
        self.evaluated: list[str] = []
        self.clones: list[FakeSession] = []

    async def eval(
        self,
        code: str,
        *,
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
        ns: str | None = None,
    ) -> FakeEval:
        self.evaluated.append(code)
        reply = next((reply for key, reply in self.replies.items() if key in code), Reply())
        for text in reply.out:
            if on_stdout:
                on_stdout(text)
        for text in reply.err:
            if on_stderr:
                on_stderr(text)
        return FakeEval(self.id, reply)

    async def clone(self) -> FakeSession:
        if self.fail_clone:
            raise ProtocolError("Server refused to clone a session")
        child = FakeSession(f"{self.id}.{len(self.clones) + 1}", self.replies)
        self.clones.append(child)
        return child

    def __repr__(self) -> str:
        return f"FakeSession({self.id!r})"


class FakeClient:
    """Client whose close handlers fire synchronously, like the real one."""

    def __init__(self, session: FakeSession) -> None:
        self.session = session
        self.closed = False
        self.close_reasons: list[CloseReason] = []
        self._handlers: list[Callable[[Any, CloseReason], None]] = []

    def on_close(self, handler: Callable[[Any, CloseReason], None]) -> None:
        self._handlers.append(handler)

    def close(self, reason: CloseReason = CloseReason.DELIBERATE) -> None:
        if self.closed:
            return
        self.closed = True
        self.close_reasons.append(reason)
        for handler in tuple(self._handlers):
            handler(self, reason)

    def drop(self) -> None:
        self.close(CloseReason.UNEXPECTED)


class FakePrompter:
    """Prompter returning scripted answers; ``None`` once a script runs out."""

    def __init__(
        self,
        *,
        texts: Sequence[str | None] = (),
        picks: Sequence[str | None] = (),
        multi_picks: Sequence[list[str] | None] = (),
    ) -> None:
        self.texts = list(texts)
        self.picks = list(picks)
        self.multi_picks = list(multi_picks)
        self.errors: list[str] = []
        self.calls: list[tuple[str, Any, Any]] = []

    async def prompt_text(self, prompt: str, *, placeholder: str = "", value: str = "") -> str | None:
        self.calls.append(("text", prompt, value))
        return self.texts.pop(0) if self.texts else None

    async def pick_one(
        self,
        values: Sequence[str],
        *,
        placeholder: str = "",
        selected: str | None = None,
    ) -> str | None:
        self.calls.append(("one", tuple(values), selected))
        return self.picks.pop(0) if self.picks else None

    async def pick_many(
        self,
        values: Sequence[str],
        *,
        placeholder: str = "",
        selected: Sequence[str] = (),
    ) -> list[str] | None:
        self.calls.append(("many", tuple(values), tuple(selected)))
        return self.multi_picks.pop(0) if self.multi_picks else None

    def show_error(self, message: str) -> None:
        self.errors.append(message)


class RecordingSink:
    def __init__(self) -> None:
        self.text = ""

    def append(self, text: str) -> None:
        self.text += text

    def append_line(self, text: str) -> None:
        self.append(text + "\n")

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines()


__all__ = ["FakeClient", "FakeEval", "FakePrompter", "FakeSession", "RecordingSink", "Reply"]
