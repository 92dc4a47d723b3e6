"""Scrolling log pane that doubles as a line-oriented output sink."""

from __future__ import annotations

from textual.widgets import RichLog


class LogPane(RichLog):
    """RichLog that accepts partial writes and holds lines until mounted."""

    DEFAULT_CSS = """
    LogPane {
        height: 1fr;
        border: round $primary 40%;
        background: $surface;
    }

    LogPane:focus {
        border: round $primary;
    }
    """

    def __init__(self, title: str, *, id: str | None = None) -> None:
        super().__init__(id=id, wrap=True, markup=False, highlight=False)
        self.border_title = title
        self._partial = ""
        self._pending: list[str] = []
        self._mounted = False

    @property
    def lines_written(self) -> tuple[str, ...]:
        """Lines queued before mount (testing helper)."""

        return tuple(self._pending)

    def append(self, text: str) -> None:
        self._partial += text
        *lines, self._partial = self._partial.split("\n")
        for line in lines:
            self._emit(line)

    def append_line(self, text: str) -> None:
        self.append(text + "\n")

    def on_mount(self) -> None:
        self._mounted = True
        pending, self._pending = self._pending, []
        for line in pending:
            self.write(line)

    def _emit(self, line: str) -> None:
        if self._mounted:
            self.write(line)
        else:
            self._pending.append(line)


__all__ = ["LogPane"]
