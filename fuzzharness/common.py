"""Helpers shared by the fuzzing modes: running commands, judging output and handling files."""

import logging
import os
import random
import shutil
import subprocess
import sys
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .settings import TIMEOUT_MESSAGE, CheckGroupFileMode, Setting

log = logging.getLogger(__name__)

START_TIME = time.monotonic()
_timeout_secs: int | None = None

_CHARACTERS_NEEDING_QUOTES = (" ", '"', "\\", "/")


@dataclass
class CommandLine:
    """A program with its arguments and extra environment variables."""

    program: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    def add(self, *args: Any) -> "CommandLine":
        """Append arguments and return the command itself."""
        self.args.extend(str(arg) for arg in args)
        return self

    def render(self) -> str:
        """Return the command as one line, quoting arguments that need it."""
        rendered = [_quote(arg) for arg in self.args]
        return f"{self.program} {' '.join(rendered)}"

    def spawn(self) -> subprocess.Popen:
        """Start the command with piped standard output and error."""
        environment = {**os.environ, **self.env} if self.env else None
        return subprocess.Popen(
            [self.program, *self.args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=environment,
        )

    def run(self) -> subprocess.CompletedProcess:
        """Start the command and wait for it, collecting its output."""
        return _wait(self.spawn())


def _quote(argument: str) -> str:
    if any(character in argument for character in _CHARACTERS_NEEDING_QUOTES):
        escaped = argument.replace('"', '\\"')
        return f'"{escaped}"'
    return argument


def _wait(process: subprocess.Popen) -> subprocess.CompletedProcess:
    stdout, stderr = process.communicate()
    return subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)


def _status_parts(returncode: int | None) -> tuple[int | None, int | None]:
    if returncode is None:
        return None, None
    if returncode < 0:
        return None, -returncode
    return returncode, None


def _option(value: int | None) -> str:
    return "None" if value is None else f"Some({value})"


@dataclass
class OutputResult:
    """Outcome of one run of the tested program and the reasons it counts as broken."""

    code: int | None
    signal: int | None
    is_signal_broken: bool
    is_code_broken: bool
    have_invalid_output: bool
    timeouted: bool
    output: str
    command_str: str

    def is_broken(self) -> bool:
        return self.is_signal_broken or self.have_invalid_output or self.is_code_broken or self.timeouted

    def debug_print(self) -> None:
        log.info(
            "Is broken: %s, is_signal_broken - %s, have_invalid_output - %s, is_code_broken - %s, "
            "timeouted - %s, code - %s, signal - %s",
            self.is_broken(),
            self.is_signal_broken,
            self.have_invalid_output,
            self.is_code_broken,
            self.timeouted,
            _option(self.code),
            _option(self.signal),
        )


def set_timeout(seconds: int) -> None:
    """Set after how many seconds from start the application should finish."""
    global _timeout_secs
    _timeout_secs = seconds


def check_if_app_ends() -> bool:
    """Tell whether the time given to the application has run out."""
    if _timeout_secs is None:
        raise RuntimeError("Timeout was not set")
    elapsed = int(time.monotonic() - START_TIME)
    return elapsed > _timeout_secs


def close_app_if_timeouts() -> None:
    """Exit the application when its time has run out."""
    if check_if_app_ends():
        log.info("Timeout reached, closing app")
        sys.exit(0)


def remove_and_create_entire_folder(folder_name: str) -> None:
    """Remove the folder with everything in it, then create it empty."""
    folder = Path(folder_name)
    if folder.exists():
        log.info("Removing folder %s", folder_name)
        try:
            shutil.rmtree(folder)
        except OSError as error:
            number_of_files = sum(1 for _ in folder.rglob("*"))
            raise OSError(
                f"Failed to remove folder {folder_name} (number of files {number_of_files}), reason {error}"
            ) from error
        log.info("Folder %s removed", folder_name)
    else:
        log.info("Folder %s not exists, so not removing it", folder_name)

    log.info("Creating folder %s", folder_name)
    folder.mkdir(parents=True, exist_ok=True)
    log.info("Folder %s created", folder_name)


def _stem_and_extension(old_name: str) -> tuple[str, str]:
    path = Path(old_name)
    if not path.suffix:
        raise ValueError(f"File {old_name} has no extension")
    return path.stem, path.suffix[1:]


def create_new_file_name(setting: Setting, old_name: str) -> str:
    """Return a free name in the broken files folder for a copy of the file."""
    stem, extension = _stem_and_extension(old_name)
    number = random.randint(1, 99_999)
    while True:
        new_name = f"{setting.broken_files_dir}/{stem}{number}.{extension}"
        if not Path(new_name).exists():
            return new_name
        number += 1


def create_new_file_name_for_minimization(setting: Setting, old_name: str) -> str:
    """Return a free name in the broken files folder for a minimized copy of the file."""
    stem, extension = _stem_and_extension(old_name)
    number = random.randint(1, 999)
    while True:
        new_name = f"{setting.broken_files_dir}/{stem}_minimized_{number}.{extension}"
        if not Path(new_name).exists():
            return new_name
        number += 1


def collect_output(output: Any) -> str:
    """Join the standard output and error of a finished process, decoding them leniently."""
    stdout = (output.stdout or b"").decode("utf-8", errors="replace")
    stderr = (output.stderr or b"").decode("utf-8", errors="replace")
    return f"{stdout}\n{stderr}"


def try_to_save_file(full_name: str, new_name: str) -> None:
    """Copy the file, logging instead of failing when the copy is not possible."""
    try:
        shutil.copyfile(full_name, new_name)
    except OSError as error:
        log.error(
            "Failed to copy file %s, reason %s, (maybe broken files folder not exists?)", full_name, error
        )


def minimize_new(obj: Any, full_name: str) -> None:
    """Run the external minimizer on a broken file."""
    command = obj.get_minimize_command(full_name)
    command_str = collect_command_to_string(command)
    output = command.run()
    str_out = collect_output(output)
    if obj.settings.debug_print_results:
        log.info("Minimization output: %s", str_out)
        log.info("Minimization command: %s", command_str)


def _judge(obj: Any, completed: subprocess.CompletedProcess, command: CommandLine) -> OutputResult:
    settings = obj.settings
    str_out = collect_output(completed)
    code, signal = _status_parts(completed.returncode)

    is_signal_broken = settings.error_when_found_signal and signal is not None and not obj.ignored_signal_output(
        str_out
    )
    is_code_broken = (
        bool(settings.allowed_error_statuses)
        and code is not None
        and not (settings.ignore_timeout_errors and code == 124)
        and code not in settings.allowed_error_statuses
    )
    timeouted = settings.timeout > 0 and TIMEOUT_MESSAGE in str_out and not settings.ignore_timeout_errors

    str_out += (
        f'\n##### Automatic Fuzzer note, output status "{_option(code)}", '
        f'output signal "{_option(signal)}"\n'
    )

    return OutputResult(
        code=code,
        signal=signal,
        is_signal_broken=is_signal_broken,
        is_code_broken=is_code_broken,
        have_invalid_output=obj.is_broken(str_out),
        timeouted=timeouted,
        output=str_out,
        command_str=collect_command_to_string(command),
    )


def execute_command_on_pack_of_files(obj: Any, folder_name: str, files: Sequence[str]) -> OutputResult:
    """Run the tested program on a folder or a group of files, depending on its group mode."""
    mode = obj.files_group_mode()
    if mode is CheckGroupFileMode.BY_FOLDER:
        process, command = obj.run_command(folder_name), obj.get_full_command(folder_name)
    elif mode is CheckGroupFileMode.BY_FILES_GROUP:
        process, command = obj.run_group_command(files), obj.get_group_command(files)
    else:
        raise ValueError("Invalid mode")
    return _judge(obj, _wait(process), command)


def execute_command_and_connect_output(obj: Any, full_name: str) -> OutputResult:
    """Run the tested program on one file, restoring the file's content afterwards."""
    content_before = Path(full_name).read_bytes()
    command = obj.get_full_command(full_name)
    completed = _wait(obj.run_command(full_name))
    result = _judge(obj, completed, command)
    try:
        Path(full_name).write_bytes(content_before)
    except OSError as error:
        raise OSError(f"{error} - {full_name} - probably you need to set write permissions to this file") from error
    return result


def run_ruff_format_check(item_to_check: str, print_info: bool) -> subprocess.CompletedProcess:
    """Check the formatting of a file or folder with ruff."""
    if print_info:
        log.info("Ruff checking format on: %s", item_to_check)
    output = CommandLine("ruff", ["format", item_to_check, "--check"]).run()
    if print_info:
        log.info("Ruff checked format on: %s", item_to_check)
    return output


def run_ruff_format(item_to_check: str, print_info: bool) -> subprocess.CompletedProcess:
    """Format a file or folder with ruff."""
    if print_info:
        log.info("Ruff formatted on: %s", item_to_check)
    output = CommandLine("ruff", ["format", item_to_check]).run()
    if print_info:
        log.info("Ruff formatted on: %s", item_to_check)
    return output


def parse_compileall_output(output: str) -> list[str]:
    """Return the names of the files that the compileall module reported errors for."""
    prefix, suffix = "Compiling '", "'..."
    next_file_is_broken = False
    broken_files = []
    for line in reversed(output.splitlines()):
        if line.startswith(prefix):
            if next_file_is_broken:
                next_file_is_broken = False
                name = line[len(prefix):]
                if name.endswith(suffix):
                    broken_files.append(name[: -len(suffix)])
        elif "Error:" in line:
            next_file_is_broken = True
    return broken_files


def find_broken_files_by_cpython(dir_to_check: str) -> list[str]:
    """Return the files in the folder that the Python compiler cannot compile."""
    output = CommandLine("python3", ["-m", "compileall", dir_to_check]).run()
    broken_files = []
    for file_name in parse_compileall_output(collect_output(output)):
        if not Path(file_name).is_file():
            log.error("BUG: Invalid missing file name '%s'", file_name)
            continue
        broken_files.append(file_name)
    shutil.rmtree(Path(dir_to_check) / "__pycache__", ignore_errors=True)
    return broken_files


def _iter_files(directory: str) -> Iterator[Path]:
    for root, dirs, files in os.walk(directory):
        dirs.sort()
        for name in sorted(files):
            path = Path(root) / name
            if path.is_file():
                yield path


def check_files_number(name: str, directory: str) -> None:
    """Log how many files the folder holds."""
    log.info("%s - %s - Files Number %d.", name, directory, calculate_number_of_files(directory))


def calculate_number_of_files(directory: str) -> int:
    """Count the files in the folder and its subfolders."""
    return sum(1 for _ in _iter_files(directory))


def generate_files(obj: Any, settings: Setting) -> None:
    """Run the broken file generator of the program, exiting when it fails."""
    process = obj.broken_file_creator()
    stdout, _stderr = process.communicate()
    out = (stdout or b"").decode("utf-8")
    if process.returncode != 0:
        log.error("Exit status %s", process.returncode)
        log.error("%s", out)
        log.error("Failed to generate files")
        sys.exit(1)
    if settings.debug_print_broken_files_creator:
        log.info("%s", out)


def collect_files(settings: Setting) -> tuple[list[str], int]:
    """Collect generated files with a wanted extension and their total size."""
    directory = settings.temp_possible_broken_files_dir
    if not Path(directory).is_dir():
        raise NotADirectoryError(f"{directory} is not a folder")

    files: list[str] = []
    size_all = 0
    for path in _iter_files(directory):
        try:
            size = path.stat().st_size
        except OSError:
            continue
        name = str(path)
        if any(name.lower().endswith(extension) for extension in settings.extensions):
            files.append(name)
            size_all += size

    del files[settings.max_collected_files:]
    if not files:
        log.error("%r", settings)
        raise RuntimeError(f"No files collected from {directory}")
    return files, size_all


def collect_command_to_string(command: CommandLine) -> str:
    """Return the command as one line, quoting arguments that need it."""
    return command.render()