"""Fuzzer settings: data types and loading from the configuration file."""

import configparser
import json
import re
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .langs import Lang
from .ruff_rules import BROKEN_ITEMS_TO_FIND, BROKEN_ITEMS_TO_IGNORE

TIMEOUT_MESSAGE = "timeout: sending signal"
FILE_PATHS_PLACEHOLDER = "FILE_PATHS_TO_PROVIDE"
DEFAULT_CONFIG_NAME = "fuzz_settings"

Config = Mapping[str, Mapping[str, str]]


class CheckGroupFileMode(Enum):
    """How files are handed to the tested program when checked in groups."""

    NONE = "none"
    BY_FOLDER = "by_group"
    BY_FILES_GROUP = "by_files"


class StabilityMode(Enum):
    """What is compared between repeated runs of the tested program."""

    NONE = "none"
    CONSOLE_OUTPUT = "console_output"
    FILE_CONTENT = "file_content"
    OUTPUT_CONTENT = "output_content"


class Mode(Enum):
    """Kind of tested application."""

    CUSTOM = "custom"
    RUFF = "ruff"


@dataclass
class NonCustomItems:
    app_binary: str
    app_config: str
    additional_minimization_command: str
    tool_type: str
    search_items: list[str]
    ignored_items: list[str]
    stability_mode: StabilityMode


@dataclass
class CustomItems:
    group_mode: CheckGroupFileMode
    command_parts: list[str]
    search_items: list[str]
    ignored_items: list[str]
    file_type: Lang
    stability_mode: StabilityMode


@dataclass
class Setting:
    name: str = ""
    loop_number: int = 1
    broken_files_for_each_file: int = 1
    minimize_output: bool = False
    minimization_attempts: int = 0
    minimization_repeat: bool = False
    minimization_attempts_with_signal_timeout: int = 0
    remove_non_crashing_items_from_broken_files: bool = False
    temp_folder: str = ""
    current_mode: Mode = Mode.CUSTOM
    extensions: list[str] = field(default_factory=list)
    broken_files_dir: str = ""
    valid_input_files_dir: str = ""
    temp_possible_broken_files_dir: str = ""
    debug_print_results: bool = False
    timeout: int = 0
    allowed_error_statuses: list[int] = field(default_factory=list)
    error_when_found_signal: bool = False
    debug_print_broken_files_creator: bool = False
    max_collected_files: int = 0
    find_minimal_rules: bool = False
    check_if_file_is_parsable: bool = False
    ignore_timeout_errors: bool = False
    grouping: int = 1
    debug_executed_commands: bool = False
    check_for_stability: bool = False
    stability_runs: int = 1
    custom_items: CustomItems | None = None
    non_custom_items: NonCustomItems | None = None
    custom_folder_path: str = ""


_UNSIGNED = re.compile(r"\+?\d+")
_SIGNED = re.compile(r"[+-]?\d+")


def _parse_bool(value: str, key: str) -> bool:
    if value == "true":
        return True
    if value == "false":
        return False
    raise ValueError(f"Invalid boolean value {value!r} for {key}")


def _parse_unsigned(value: str, key: str) -> int:
    if not _UNSIGNED.fullmatch(value):
        raise ValueError(f"Invalid unsigned number {value!r} for {key}")
    return int(value)


def _parse_signed(value: str, key: str) -> int:
    if not _SIGNED.fullmatch(value):
        raise ValueError(f"Invalid number {value!r} for {key}")
    return int(value)


def _mode_from_name(name: str) -> Mode:
    lowered = name.lower()
    for mode in Mode:
        if mode.value == lowered:
            return mode
    raise ValueError(f"Invalid mode {name}.")


def _items_with_prefix(tool: Mapping[str, str], prefix: str) -> list[str]:
    return [value for key, value in tool.items() if key.startswith(prefix) and value.strip()]


def parse_stability_mode(tool: Mapping[str, str]) -> StabilityMode:
    """Read the stability mode of a tool section."""
    value = tool["stability_mode"]
    try:
        return StabilityMode(value)
    except ValueError:
        raise ValueError(f"Invalid stability mode {value}") from None


def process_custom_struct(general: Mapping[str, str], tool: Mapping[str, str]) -> CustomItems:
    """Build the description of a custom tool from its configuration section."""
    stability_mode = parse_stability_mode(tool)

    group_value = tool["group_mode"]
    try:
        group_mode = CheckGroupFileMode(group_value)
    except ValueError:
        raise ValueError(f"Invalid group mode {group_value}") from None

    timeout_time = _parse_unsigned(general["timeout"], "timeout")
    command_parts: list[str] = []
    if timeout_time != 0:
        command_parts.extend(["timeout", "-v", str(timeout_time)])

    command = tool["command"]
    if not any(part.strip() for part in command.split("|")) or FILE_PATHS_PLACEHOLDER not in command:
        raise ValueError(
            f"No command found in the custom tool or {FILE_PATHS_PLACEHOLDER} is not found in the command"
        )
    command_parts.extend(command.split("|"))

    search_items = _items_with_prefix(tool, "search_item_")
    if not search_items:
        raise ValueError("No search items found in the custom tool")
    ignored_items = _items_with_prefix(tool, "ignored_item_")

    file_type_value = tool["file_type"]
    try:
        file_type = Lang(file_type_value)
    except ValueError:
        raise ValueError(f"Invalid file type {file_type_value}") from None

    return CustomItems(
        group_mode=group_mode,
        command_parts=command_parts,
        search_items=search_items,
        ignored_items=ignored_items,
        file_type=file_type,
        stability_mode=stability_mode,
    )


def get_non_custom_items(tool: Mapping[str, str]) -> NonCustomItems:
    """Build the description of a built-in tool from its configuration section."""
    return NonCustomItems(
        app_binary=tool["app_binary"],
        app_config=tool["app_config"],
        additional_minimization_command=tool["additional_minimization_command"].strip(),
        tool_type=tool["tool_type"],
        search_items=list(BROKEN_ITEMS_TO_FIND),
        ignored_items=list(BROKEN_ITEMS_TO_IGNORE),
        stability_mode=parse_stability_mode(tool),
    )


def _resolve_config_path(path: Path) -> Path:
    if path.is_file():
        return path
    for suffix in (".toml", ".json", ".ini"):
        candidate = path.with_name(path.name + suffix)
        if candidate.is_file():
            return candidate
    raise FileNotFoundError(f"Configuration file {path} not found")


def _stringify(value: Any, section: str, key: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"Unsupported value for {section}.{key}: {value!r}")


def read_config(path: str | Path = DEFAULT_CONFIG_NAME) -> dict[str, dict[str, str]]:
    """Read a TOML, JSON or INI configuration into sections of string values.

    A path without a suffix is looked up with the suffixes .toml, .json and .ini.
    """
    resolved = _resolve_config_path(Path(path))
    text = resolved.read_text(encoding="utf-8")
    suffix = resolved.suffix.lower()

    raw: Mapping[str, Any]
    if suffix == ".json":
        raw = json.loads(text)
    elif suffix == ".ini":
        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str  # type: ignore[assignment, method-assign]
        parser.read_string(text)
        raw = {section: dict(parser[section]) for section in parser.sections()}
    else:
        raw = tomllib.loads(text)

    config: dict[str, dict[str, str]] = {}
    for section, values in raw.items():
        if not isinstance(values, Mapping):
            raise ValueError(f"Top level entry {section} is not a section")
        config[section] = {key: _stringify(value, section, key) for key, value in values.items()}
    return config


def settings_from_config(config: Config) -> Setting:
    """Build the settings from configuration sections of string values."""
    general = config["general"]
    current_mode_string = general["current_mode"]
    if "custom" in current_mode_string:
        current_mode = Mode.CUSTOM
    else:
        current_mode = _mode_from_name(current_mode_string)
    current = config[current_mode_string]

    def flag(key: str) -> bool:
        return _parse_bool(general[key], key)

    def number(key: str) -> int:
        return _parse_unsigned(general[key], key)

    extensions = [f".{part}" for part in (e.strip() for e in current["extensions"].split(",")) if part]
    allowed_error_statuses = [
        _parse_signed(part, "allowed_error_statuses") for part in general["allowed_error_statuses"].split(",")
    ]

    find_minimal_rules = flag("find_minimal_rules")
    remove_non_crashing = flag("remove_non_crashing_items_from_broken_files")
    ignore_timeout_errors = flag("ignore_timeout_errors")
    grouping = number("grouping")
    debug_executed_commands = flag("debug_executed_commands")

    custom_items: CustomItems | None = None
    non_custom_items: NonCustomItems | None = None
    if current_mode is Mode.CUSTOM:
        custom_items = process_custom_struct(general, current)
    else:
        non_custom_items = get_non_custom_items(current)

    return Setting(
        name=current["name"],
        loop_number=number("loop_number"),
        broken_files_for_each_file=number("broken_files_for_each_file"),
        minimize_output=flag("minimize_output"),
        minimization_attempts=number("minimization_attempts"),
        minimization_repeat=flag("minimization_repeat"),
        minimization_attempts_with_signal_timeout=number("minimization_attempts_with_signal_timeout"),
        remove_non_crashing_items_from_broken_files=remove_non_crashing,
        temp_folder=general["temp_folder"],
        current_mode=current_mode,
        extensions=extensions,
        broken_files_dir=current["broken_files_dir"],
        valid_input_files_dir=current["valid_input_files_dir"],
        temp_possible_broken_files_dir=general["temp_possible_broken_files_dir"],
        debug_print_results=flag("debug_print_results"),
        timeout=number("timeout"),
        allowed_error_statuses=allowed_error_statuses,
        error_when_found_signal=flag("error_when_found_signal"),
        debug_print_broken_files_creator=flag("debug_print_broken_files_creator"),
        max_collected_files=number("max_collected_files"),
        find_minimal_rules=find_minimal_rules,
        check_if_file_is_parsable=flag("check_if_file_is_parsable"),
        ignore_timeout_errors=ignore_timeout_errors,
        grouping=grouping,
        debug_executed_commands=debug_executed_commands,
        check_for_stability=flag("check_for_stability"),
        stability_runs=number("stability_runs"),
        custom_items=custom_items,
        non_custom_items=non_custom_items,
        custom_folder_path=general["custom_folder_path"],
    )


def load_settings(path: str | Path = DEFAULT_CONFIG_NAME) -> Setting:
    """Read the configuration file and build the settings from it."""
    return settings_from_config(read_config(path))