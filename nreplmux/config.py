"""App configuration loading helpers."""

from __future__ import annotations

import json
from pathlib import Path

import tomllib

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

CONFIG_DIR = Path.home() / ".config" / "nreplmux"
CONFIG_FILE = CONFIG_DIR / "config.toml"


class CustomCljsReplConfig(BaseModel):
    """User-defined ClojureScript REPL type stored in config.toml."""

    model_config = ConfigDict(frozen=True)

    name: str
    start_code: str = Field(validation_alias=AliasChoices("start_code", "startCode"))
    tell_user_to_start_regexp: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tell_user_to_start_regexp", "tellUserToStartRegExp"),
    )
    print_this_line_regexp: str | None = Field(
        default=None,
        validation_alias=AliasChoices("print_this_line_regexp", "printThisLineRegExp"),
    )
    connected_regexp: str = Field(validation_alias=AliasChoices("connected_regexp", "connectedRegExp"))


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    default_host: str = "localhost"
    auto_connect: bool = False
    open_browser_when_figwheel_started: bool = True
    custom_cljs_repl: CustomCljsReplConfig | None = None

    def with_custom_cljs_repl(self, custom: CustomCljsReplConfig | None) -> AppConfig:
        """Return a copy with the custom REPL type replaced."""

        return self.model_copy(update={"custom_cljs_repl": custom})

    def with_auto_connect(self, enabled: bool) -> AppConfig:
        return self.model_copy(update={"auto_connect": enabled})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()

    custom: CustomCljsReplConfig | None = None
    custom_data = data.get("custom_cljs_repl")
    if isinstance(custom_data, dict):
        try:
            custom = CustomCljsReplConfig(**custom_data)
        except ValidationError:
            custom = None

    defaults = AppConfig.model_fields
    return AppConfig(
        theme=data.get("theme", defaults["theme"].default),
        default_host=data.get("default_host", defaults["default_host"].default),
        auto_connect=data.get("auto_connect", defaults["auto_connect"].default),
        open_browser_when_figwheel_started=data.get(
            "open_browser_when_figwheel_started",
            defaults["open_browser_when_figwheel_started"].default,
        ),
        custom_cljs_repl=custom,
    )


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"theme = {_quote(config.theme)}",
        f"default_host = {_quote(config.default_host)}",
        f"auto_connect = {str(config.auto_connect).lower()}",
        f"open_browser_when_figwheel_started = {str(config.open_browser_when_figwheel_started).lower()}",
    ]
    custom = config.custom_cljs_repl
    if custom is not None:
        lines.append("")
        lines.append("[custom_cljs_repl]")
        lines.append(f"name = {_quote(custom.name)}")
        lines.append(f"start_code = {_quote(custom.start_code)}")
        if custom.tell_user_to_start_regexp:
            lines.append(f"tell_user_to_start_regexp = {_quote(custom.tell_user_to_start_regexp)}")
        if custom.print_this_line_regexp:
            lines.append(f"print_this_line_regexp = {_quote(custom.print_this_line_regexp)}")
        lines.append(f"connected_regexp = {_quote(custom.connected_regexp)}")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _quote(value: str) -> str:
    # JSON string escapes are valid TOML basic-string escapes.
    return json.dumps(value)


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    for key in ("theme", "default_host"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = value
    for key in ("auto_connect", "open_browser_when_figwheel_started"):
        value = raw.get(key)
        if isinstance(value, bool):
            data[key] = value
    custom = raw.get("custom_cljs_repl")
    if isinstance(custom, dict):
        data["custom_cljs_repl"] = {
            str(key): value for key, value in custom.items() if isinstance(value, str)
        }
    return data


__all__ = [
    "AppConfig",
    "CONFIG_DIR",
    "CONFIG_FILE",
    "CustomCljsReplConfig",
    "load_config",
    "save_config",
]
