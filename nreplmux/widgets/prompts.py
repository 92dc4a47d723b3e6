"""Modal screens backing the connect flow's prompts."""

from __future__ import annotations

from typing import Sequence

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, OptionList, SelectionList, Static

_PROMPT_CSS = """
{name} {{
    align: center middle;
}}

{name} > Vertical {{
    width: 72;
    height: auto;
    max-height: 80%;
    border: thick $primary 60%;
    background: $surface;
    padding: 1 2;
}}

{name} .prompt-title {{
    text-style: bold;
    margin-bottom: 1;
}}
"""


class TextPromptScreen(ModalScreen[str | None]):
    """Single-line input; dismisses with the text or ``None`` on escape."""

    DEFAULT_CSS = _PROMPT_CSS.format(name="TextPromptScreen")
    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, prompt: str, *, placeholder: str = "", value: str = "") -> None:
        super().__init__()
        self._prompt = prompt
        self._placeholder = placeholder
        self._value = value

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(self._prompt, classes="prompt-title")
            yield Input(value=self._value, placeholder=self._placeholder, id="prompt-input")

    def on_mount(self) -> None:
        self.query_one("#prompt-input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self.dismiss(event.value)

    def action_cancel(self) -> None:
        self.dismiss(None)


class PickOneScreen(ModalScreen[str | None]):
    """Pick list with the remembered choice highlighted."""

    DEFAULT_CSS = _PROMPT_CSS.format(name="PickOneScreen")
    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, values: Sequence[str], *, placeholder: str = "", selected: str | None = None) -> None:
        super().__init__()
        self._values = list(values)
        self._placeholder = placeholder
        self._selected = selected

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(self._placeholder, classes="prompt-title")
            yield OptionList(*self._values, id="pick-one")

    def on_mount(self) -> None:
        options = self.query_one("#pick-one", OptionList)
        if self._selected in self._values:
            options.highlighted = self._values.index(self._selected)
        options.focus()

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        event.stop()
        self.dismiss(self._values[event.option_index])

    def action_cancel(self) -> None:
        self.dismiss(None)


class PickManyScreen(ModalScreen[list[str] | None]):
    """Multi-select list confirmed with the OK button."""

    DEFAULT_CSS = _PROMPT_CSS.format(name="PickManyScreen")
    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, values: Sequence[str], *, placeholder: str = "", selected: Sequence[str] = ()) -> None:
        super().__init__()
        self._values = list(values)
        self._placeholder = placeholder
        self._selected = set(selected)

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(self._placeholder, classes="prompt-title")
            yield SelectionList[str](
                *((value, value, value in self._selected) for value in self._values),
                id="pick-many",
            )
            yield Button("OK", id="pick-many-ok", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#pick-many", SelectionList).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id != "pick-many-ok":
            return
        event.stop()
        chosen = set(self.query_one("#pick-many", SelectionList).selected)
        self.dismiss([value for value in self._values if value in chosen])

    def action_cancel(self) -> None:
        self.dismiss(None)


__all__ = ["PickManyScreen", "PickOneScreen", "TextPromptScreen"]
