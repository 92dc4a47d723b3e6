"""Run bootstrap code on a session and decide success from its output."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Iterable, Protocol, Sequence

from .models import OutputChunk, Stream
from .nrepl import NReplError, strip_ansi
from .services import LogSink

LOG = logging.getLogger(__name__)

SuccessPredicate = Callable[[str | None, Sequence[str], Sequence[str]], bool]
OutputProcessor = Callable[[str], None]


class PendingEval(Protocol):
    value: Awaitable[str | None]

    def output(self) -> AsyncIterator[OutputChunk]: ...


class EvalSession(Protocol):
    """Anything that can evaluate code the way ``NReplSession`` does."""

    @property
    def id(self) -> str: ...

    async def eval(self, code: str) -> PendingEval: ...


@dataclass(slots=True)
class OutputFold:
    """Folds tagged output chunks into stdout/stderr line lists."""

    processors: Sequence[OutputProcessor] = ()
    sink: LogSink | None = None
    out: list[str] = field(default_factory=list)
    err: list[str] = field(default_factory=list)

    def feed(self, chunk: OutputChunk) -> None:
        text = strip_ansi(chunk.text)
        if chunk.stream is Stream.STDOUT:
            self.out.append(text)
        else:
            self.err.append(text)
        if self.sink is not None:
            self.sink.append(text)
        for processor in self.processors:
            processor(text)


async def eval_connect_code(
    session: EvalSession,
    code: str,
    name: str,
    check: SuccessPredicate,
    output_processors: Iterable[OutputProcessor] = (),
    *,
    connection_log: LogSink | None = None,
) -> bool:
    """Evaluate ``code`` and classify the outcome with ``check``.

    Output is stripped of escape codes, accumulated per stream and passed
    through every processor as it arrives. A failing evaluation is logged and
    treated as an empty value, so ``check`` still sees whatever output was
    captured up to that point. Adopting ``session`` on success is up to the
    caller.
    """

    fold = OutputFold(tuple(output_processors), connection_log)
    value: str | None = None
    try:
        result = await session.eval(code)
        async for chunk in result.output():
            fold.feed(chunk)
        value = await result.value
    except NReplError as exc:
        LOG.warning(
            "Error evaluating connect form",
            extra={"repl_type": name, "session": session.id, "error": str(exc)},
        )
    succeeded = bool(check(value, fold.out, fold.err))
    LOG.debug("Connect form evaluated", extra={"repl_type": name, "succeeded": succeeded})
    return succeeded


__all__ = ["EvalSession", "OutputFold", "OutputProcessor", "SuccessPredicate", "eval_connect_code"]
