"""Input line that evaluates forms on the session bound to the cljc role."""

from __future__ import annotations

from typing import Callable

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Button, Input, Static

from nreplmux.models import ConnectionSnapshot
from nreplmux.nrepl import NReplError
from nreplmux.services import LogSink
from nreplmux.session import SessionManager


class EvalPad(Container):
    """Evaluate Clojure forms and stream their output into a log sink."""

    DEFAULT_CSS = """
    EvalPad {
        layout: vertical;
        height: auto;
        border: round $primary 40%;
        padding: 0 1;
        background: $surface;
    }

    EvalPad:focus-within {
        border: round $primary;
    }

    EvalPad .eval-actions {
        height: auto;
        align-horizontal: left;
    }

    EvalPad .eval-actions > * {
        margin-right: 1;
    }

    #eval-status {
        color: $text-muted;
    }
    """

    def __init__(self, session_manager: SessionManager, output: LogSink) -> None:
        super().__init__(id="eval-pad")
        self._session_manager = session_manager
        self._output = output
        self._input: Input | None = None
        self._status_panel: Static | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Input(placeholder="(+ 1 2)", id="eval-input")
        yield Horizontal(
            Button("Evaluate", id="eval-run", variant="primary"),
            Static("", id="eval-status"),
            classes="eval-actions",
        )

    async def on_mount(self) -> None:
        self._input = self.query_one("#eval-input", Input)
        self._status_panel = self.query_one("#eval-status", Static)
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        await self.evaluate_current()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "eval-run":
            await self.evaluate_current()

    async def evaluate_current(self) -> None:
        if not self._input:
            return
        code = self._input.value.strip()
        if not code:
            self._set_status("Enter a form to evaluate.")
            return
        self._set_status("Evaluating…")
        try:
            result = await self._session_manager.evaluate(
                code,
                on_stdout=self._output.append,
                on_stderr=self._output.append,
            )
            value = await result.value
        except NReplError as exc:
            self._output.append_line(f"; {exc}")
            self._set_status("Evaluation failed")
            return
        self._output.append_line(f"=> {value}")
        self._set_status(f"ns: {result.ns}" if result.ns else "")

    def _handle_session_update(self, state: ConnectionSnapshot) -> None:
        role = state.cljc_role
        self._set_status(f"Evaluating in {role}" if role else "Not connected")

    def _set_status(self, message: str) -> None:
        if self._status_panel:
            self._status_panel.update(message)


__all__ = ["EvalPad"]
