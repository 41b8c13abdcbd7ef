"""The ruff linter and formatter as a program under test."""

import itertools
import logging
import os
import random
import subprocess
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .common import CommandLine, collect_output, create_new_file_name, find_broken_files_by_cpython, run_ruff_format_check, try_to_save_file
from .langs import Lang, create_broken_files
from .program import ASAN_ENVS, ProgramConfig, asan_envs_enabled
from .ruff_rules import calculate_ignored_rules, contains_broken_item, contains_ignored_item
from .settings import CheckGroupFileMode, NonCustomItems, Setting, StabilityMode

log = logging.getLogger(__name__)

_FAILED_TO_PARSE = "error: Failed to parse "
_SKIPPED_PREFIXES = ("warning: `", "Found: `", "Found ", "Ignoring `")
_FILES_PER_FOLDER = 1000


def _is_noise(line: str) -> bool:
    return (
        (".py" in line and line.count(":") >= 3)
        or not line.strip()
        or line.startswith(_SKIPPED_PREFIXES)
    )


def filter_report_output(output: str) -> str:
    """Keep only the lines of ruff output worth reporting, up to the first '---' line."""
    kept = (line for line in output.splitlines() if not _is_noise(line))
    deduplicated = (line for line, _ in itertools.groupby(kept))
    return "\n".join(itertools.takewhile(lambda line: line != "---", deduplicated))


def parse_ruff_failed_files(output: str) -> list[str]:
    """Return the Python files that ruff reported it could not parse."""
    failed = []
    for line in output.splitlines():
        if not line.startswith(_FAILED_TO_PARSE):
            continue
        rest = line[len(_FAILED_TO_PARSE):]
        index = rest.find(".py")
        if index == -1:
            continue
        file_name = rest[: index + 3]
        if " " in file_name:
            continue
        failed.append(file_name)
    return failed


def _python_files(directory: str) -> list[Path]:
    found = []
    for root, dirs, files in os.walk(directory):
        dirs.sort()
        found.extend(Path(root) / name for name in sorted(files) if name.lower().endswith(".py"))
    return found


def _chunks(items: Iterable[Path], size: int) -> Iterator[list[Path]]:
    iterator = iter(items)
    while chunk := list(itertools.islice(iterator, size)):
        yield chunk


def _move_to_new_folder(dir_to_check: str, files: list[Path]) -> str:
    while True:
        folder = Path(dir_to_check) / f"FDR_{random.getrandbits(64)}"
        try:
            folder.mkdir(parents=True, exist_ok=True)
            break
        except OSError:
            continue
    for file in files:
        new_name = folder / f"F_NAME_{random.getrandbits(64)}.py"
        try:
            file.replace(new_name)
        except OSError as error:
            log.info("Failed to move file: %s with error: %s", file, error)
            file.unlink()
    return str(folder)


def _remove_failed_by_ruff(folder: str) -> int:
    failed = parse_ruff_failed_files(collect_output(run_ruff_format_check(folder, False)))
    for file_name in failed:
        Path(file_name).unlink()
    return len(failed)


def _remove_failed_by_cpython(folder: str) -> int:
    failed = find_broken_files_by_cpython(folder)
    for file_name in failed:
        Path(file_name).unlink()
    return len(failed)


class RuffProgram(ProgramConfig):
    """Ruff run as a linter, a fixer, a formatter or a type checker."""

    def __init__(self, settings: Setting, non_custom_items: NonCustomItems | None = None) -> None:
        super().__init__(settings)
        items = non_custom_items if non_custom_items is not None else settings.non_custom_items
        if items is None:
            raise ValueError("Ruff program needs its items in the settings")
        self.non_custom_items = items
        self.ignored_rules = ""

    def minimize_additional_command(self) -> str | None:
        return self.non_custom_items.additional_minimization_command or None

    def broken_items(self) -> list[str]:
        return list(self.non_custom_items.search_items)

    def ignored_items(self) -> list[str]:
        return list(self.non_custom_items.ignored_items)

    def basic_run_command(self) -> CommandLine:
        timeout = self.settings.timeout
        if timeout == 0:
            return CommandLine(self.non_custom_items.app_binary)
        return CommandLine("timeout", ["-v", str(timeout), self.non_custom_items.app_binary])

    def is_broken(self, content: str) -> bool:
        return contains_broken_item(content) and not self.ignored_signal_output(content)

    def ignored_signal_output(self, output: str) -> bool:
        return contains_ignored_item(output)

    def validate_output_and_save_file(self, full_name: str, output: str) -> str | None:
        report = filter_report_output(output)
        new_name = create_new_file_name(self.settings, full_name)
        new_name_not_minimized = create_new_file_name(self.settings, full_name)
        log.error("File %s saved to %s\n%s", full_name, new_name, report)
        try_to_save_file(full_name, new_name)
        try_to_save_file(full_name, new_name_not_minimized)
        return new_name

    def get_full_command(self, full_name: str) -> CommandLine:
        command = self.basic_run_command()
        tool_type = self.non_custom_items.tool_type
        lint_args = ("check", full_name, "--select", "ALL", "--preview", "--output-format", "concise", "--no-cache")
        if tool_type == "lint_check_fix":
            command.add(*lint_args, "--fix", "--unsafe-fixes")
            if self.non_custom_items.app_config:
                command.add("--config", self.non_custom_items.app_config)
            else:
                command.add("--isolated")
            if self.ignored_rules:
                command.add("--ignore", self.ignored_rules)
        elif tool_type == "lint_check":
            command.add(*lint_args)
            if self.ignored_rules:
                command.add("--ignore", self.ignored_rules)
        elif tool_type == "format":
            command.add("format", full_name, "--check")
        elif tool_type == "red_knot":
            command.add(full_name)
        else:
            raise ValueError(f"Unknown tool type: {tool_type}")

        if asan_envs_enabled():
            command.env.update(ASAN_ENVS)
        if self.settings.debug_executed_commands:
            log.info("Executing command: %s", command.render())
        return command

    def broken_file_creator(self) -> subprocess.Popen:
        return create_broken_files(self.settings, Lang.PYTHON)

    def init(self) -> None:
        self.ignored_rules = calculate_ignored_rules()

    def get_version(self) -> str:
        output = CommandLine("ruff", ["version"]).run()
        out = (output.stdout or b"").decode("utf-8", errors="replace")
        err = (output.stderr or b"").decode("utf-8", errors="replace")
        if out:
            return out.strip()
        if err:
            return err.strip()
        return ""

    def remove_non_parsable_files(self, dir_to_check: str) -> None:
        """Remove Python files that ruff or the Python compiler cannot parse."""
        if not self.settings.check_if_file_is_parsable:
            return
        files = _python_files(dir_to_check)
        all_files = len(files)

        with ThreadPoolExecutor() as executor:
            folders = list(executor.map(lambda chunk: _move_to_new_folder(dir_to_check, chunk), _chunks(files, _FILES_PER_FOLDER)))
            removed_ruff = sum(executor.map(_remove_failed_by_ruff, folders))
            removed_cpython = sum(executor.map(_remove_failed_by_cpython, folders))

        log.info(
            "Removed %d/%d non parsable files - first %d by ruff, later %d by cpython",
            removed_ruff + removed_cpython,
            all_files,
            removed_ruff,
            removed_cpython,
        )

    def files_group_mode(self) -> CheckGroupFileMode:
        if self.non_custom_items.tool_type in ("lint_check_fix", "lint_check", "format"):
            return CheckGroupFileMode.BY_FOLDER
        return CheckGroupFileMode.NONE

    def stability_mode(self) -> StabilityMode:
        return self.non_custom_items.stability_mode