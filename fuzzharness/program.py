"""Common behaviour of the programs under test."""

import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence

from .common import (
    CommandLine,
    collect_command_to_string,
    create_new_file_name,
    create_new_file_name_for_minimization,
    try_to_save_file,
)
from .settings import CheckGroupFileMode, Setting, StabilityMode

log = logging.getLogger(__name__)

ASAN_ENVS: dict[str, str] = {
    "RUST_BACKTRACE": "1",
    "ASAN_SYMBOLIZER_PATH": "/usr/bin/llvm-symbolizer",
    "ASAN_OPTIONS": "symbolize=1",
}

_MINIMIZE_PLACEHOLDER = "ZZZZZZZZZZZZZZZZZZZZZZZZZZZZZZZ"

_STABILITY_MESSAGES = {
    StabilityMode.FILE_CONTENT: "File content between runs differs",
    StabilityMode.CONSOLE_OUTPUT: "Console output between runs differs",
    StabilityMode.OUTPUT_CONTENT: "Console output or file content between runs differs",
}

_SEPARATOR = "\n=========================\n"

_asan_lock = threading.Lock()
_use_asan_envs = False


def set_asan_envs(enabled: bool) -> None:
    """Turn on or off adding sanitizer variables to single-file commands."""
    global _use_asan_envs
    with _asan_lock:
        _use_asan_envs = enabled


def asan_envs_enabled() -> bool:
    """Tell whether sanitizer variables are added to single-file commands."""
    with _asan_lock:
        return _use_asan_envs


class ProgramConfig(ABC):
    """A program under test: how to run it and how to judge its output."""

    def __init__(self, settings: Setting) -> None:
        self.settings = settings

    @abstractmethod
    def broken_items(self) -> list[str]:
        """Texts whose presence in the output marks a crash."""

    @abstractmethod
    def ignored_items(self) -> list[str]:
        """Texts whose presence in the output makes a crash uninteresting."""

    def minimize_additional_command(self) -> str | None:
        return None

    @abstractmethod
    def is_broken(self, content: str) -> bool:
        """Tell whether the output shows a crash."""

    def validate_output_and_save_file(self, full_name: str, output: str) -> str | None:
        """Save a copy of a broken file and return its new name."""
        new_name = create_new_file_name(self.settings, full_name)
        log.error("File %s saved to %s\n%s", full_name, new_name, output)
        try_to_save_file(full_name, new_name)
        return new_name

    @abstractmethod
    def stability_mode(self) -> StabilityMode:
        """What is compared between repeated runs."""

    def validate_txt_and_save_file(self, full_name: str, data: Sequence[str]) -> str | None:
        """Save a copy of a file whose runs differ and return its new name."""
        mode = self.stability_mode()
        if mode is StabilityMode.NONE:
            raise ValueError("Stability mode is not set")
        new_name = create_new_file_name(self.settings, full_name)
        diff = _STABILITY_MESSAGES[mode] + "".join(f"{_SEPARATOR}{item}" for item in data) + _SEPARATOR
        log.error("File %s saved to %s\n%s", full_name, new_name, diff)
        try_to_save_file(full_name, new_name)
        return new_name

    def ignored_signal_output(self, output: str) -> bool:
        """Tell whether a crash without a status code should be ignored."""
        return False

    def get_full_command(self, full_name: str) -> CommandLine:
        command = self.basic_run_command()
        command.add(full_name)
        if asan_envs_enabled():
            command.env.update(ASAN_ENVS)
        return command

    def get_group_command(self, files: Sequence[str]) -> CommandLine:
        command = self.basic_run_command()
        command.add(*files)
        return command

    def run_command(self, full_name: str) -> subprocess.Popen:
        return self.get_full_command(full_name).spawn()

    def run_group_command(self, files: Sequence[str]) -> subprocess.Popen:
        return self.get_group_command(files).spawn()

    def get_minimize_command(self, full_name: str) -> CommandLine:
        """Build the command of the external minimizer for a broken file."""
        new_full_name = create_new_file_name_for_minimization(self.settings, full_name)
        run_command = self.get_full_command(_MINIMIZE_PLACEHOLDER)
        run_command_as_string = collect_command_to_string(run_command).replace(_MINIMIZE_PLACEHOLDER, "{}")

        command = CommandLine("minimizer")
        command.add(
            "--input-file",
            full_name,
            "--output-file",
            new_full_name,
            "--command",
            run_command_as_string,
            "--attempts",
            str(self.settings.minimization_attempts),
            "-t",
            "600",
        )
        if self.settings.minimization_repeat:
            command.add("-r")
        additional = self.minimize_additional_command()
        if additional is not None:
            command.add("--additional-command", additional)
        for item in self.broken_items():
            command.add("--broken-info", item)
        for item in self.ignored_items():
            command.add("--ignored-info", item)
        return command

    @abstractmethod
    def basic_run_command(self) -> CommandLine:
        """The command that runs the program, without the checked file."""

    @abstractmethod
    def broken_file_creator(self) -> subprocess.Popen:
        """Start the generator of possibly broken input files."""

    def init(self) -> None:
        """Prepare the program before use."""

    def remove_non_parsable_files(self, dir_to_check: str) -> None:
        """Remove files that cannot be parsed at all; nothing is removed by default."""

    def get_version(self) -> str:
        raise RuntimeError(f"{type(self).__name__} does not report a version")

    def files_group_mode(self) -> CheckGroupFileMode:
        return CheckGroupFileMode.NONE