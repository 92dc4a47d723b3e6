"""Collaborator contracts the connection core consumes, plus small helpers around them."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol, Sequence, runtime_checkable


@runtime_checkable
class LogSink(Protocol):
    """Line-oriented output channel shown to the user."""

    def append(self, text: str) -> None:
        """Append raw text without adding a newline."""

    def append_line(self, text: str) -> None:
        """Append a full line."""


class Prompter(Protocol):
    """User prompting surface (input box and pick lists)."""

    async def prompt_text(self, prompt: str, *, placeholder: str = "", value: str = "") -> str | None:
        """Ask for one line of text; ``None`` when dismissed."""

    async def pick_one(
        self,
        values: Sequence[str],
        *,
        placeholder: str = "",
        selected: str | None = None,
    ) -> str | None:
        """Pick exactly one value; ``None`` when dismissed."""

    async def pick_many(
        self,
        values: Sequence[str],
        *,
        placeholder: str = "",
        selected: Sequence[str] = (),
    ) -> list[str] | None:
        """Pick any number of values; ``None`` when dismissed."""

    def show_error(self, message: str) -> None:
        """Surface an error message to the user."""


class SettingsStore(Protocol):
    """Small named settings scoped to a project root."""

    def get(self, project: Path | None, key: str, default: Any = None) -> Any: ...

    def update(self, project: Path | None, key: str, value: Any) -> None: ...


class Workspace(Protocol):
    """Editor view of the open document and its workspace folder."""

    def active_document(self) -> Path | None: ...

    def workspace_folder(self, document: Path) -> Path | None: ...


class LoggingSink:
    """LogSink that forwards lines to a ``logging`` logger."""

    def __init__(self, logger: logging.Logger, *, level: int = logging.INFO) -> None:
        self._logger = logger
        self._level = level
        self._buffer = ""

    def append(self, text: str) -> None:
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._logger.log(self._level, line)

    def append_line(self, text: str) -> None:
        self.append(text + "\n")


async def quick_pick_single(
    prompter: Prompter,
    settings: SettingsStore,
    project: Path | None,
    values: Sequence[str],
    *,
    placeholder: str,
    save_as: str | None = None,
    auto_select: bool = False,
) -> str | None:
    """Pick one value, pre-selecting and remembering the choice under ``save_as``."""

    if not values:
        return None
    if auto_select and len(values) == 1:
        result: str | None = values[0]
    else:
        remembered = settings.get(project, _pick_key(save_as)) if save_as else None
        selected = remembered if isinstance(remembered, str) and remembered in values else None
        result = await prompter.pick_one(values, placeholder=placeholder, selected=selected)
    if save_as and result is not None:
        settings.update(project, _pick_key(save_as), result)
    return result


async def quick_pick_multi(
    prompter: Prompter,
    settings: SettingsStore,
    project: Path | None,
    values: Sequence[str],
    *,
    placeholder: str,
    save_as: str | None = None,
) -> list[str] | None:
    """Pick several values, remembering the selection under ``save_as``."""

    remembered = settings.get(project, _pick_key(save_as), []) if save_as else []
    selected = [value for value in remembered or [] if value in values]
    result = await prompter.pick_many(values, placeholder=placeholder, selected=selected)
    if save_as and result is not None:
        settings.update(project, _pick_key(save_as), list(result))
    return result


def _pick_key(save_as: str | None) -> str:
    return f"qps-{save_as}"


__all__ = [
    "LogSink",
    "LoggingSink",
    "Prompter",
    "SettingsStore",
    "Workspace",
    "quick_pick_multi",
    "quick_pick_single",
]
