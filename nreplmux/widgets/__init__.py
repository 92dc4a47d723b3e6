"""Widget library for the Textual UI."""

from __future__ import annotations

from .eval_pad import EvalPad
from .log_pane import LogPane
from .prompts import PickManyScreen, PickOneScreen, TextPromptScreen
from .status_bar import StatusBar

__all__ = ["EvalPad", "LogPane", "PickManyScreen", "PickOneScreen", "StatusBar", "TextPromptScreen"]
