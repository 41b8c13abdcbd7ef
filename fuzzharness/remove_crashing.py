"""Rechecking saved broken files, dropping the ones that no longer crash and writing reports."""

import logging
import os
import random
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from .common import (
    collect_command_to_string,
    execute_command_and_connect_output,
    remove_and_create_entire_folder,
)
from .minimal_rules import zip_file
from .settings import Setting

log = logging.getLogger(__name__)

MAX_FILES = 999_999_999_999

_PLACEHOLDER_FILE = "TEST___FILE"

_ERROR_TYPES: tuple[tuple[str, str], ...] = (
    ("memory allocation of", "memory_failure"),
    ("stack overflow", "stack_overflow"),
    ("stack-overflow", "asan_stack_overflow"),
    ("heap-use-after-free", "asan_heap_use_after_free"),
    ("segmentation fault", "segmentation_fault"),
    ("Killed", "killed"),
    ("is not a char boundary", "char_boundary"),
    ("divide by zero", "divide_by_zero"),
    ("attempt to subtract with overflow", "overflow_s"),
    ("attempt to multiply with overflow", "overflow_m"),
    ("attempt to add with overflow", "overflow_a"),
    ("attempt to shift right with overflow", "overflow_sr"),
    ("attempt to shift left with overflow", "overflow_sl"),
    ("index out of bounds:", "index_out_of_bounds"),
    ("is out of bounds:", "out_of_bounds"),
    ("is out of bounds of", "out_of_bounds_of"),
    ("Option::unwrap()", "option_unwrap"),
    ("Result::unwrap()", "result_unwrap"),
    ("when slicing `", "slicing"),
    ("internal error: entered unreachable code", "unreachable_code"),
    ("not implemented: ", "not_implemented"),
    ("Aborted", "aborted"),
    ('output signal "Some(15)"', "out_of_memory"),
    ("AddressSanitizer: out of memory", "asan_out_of_memory"),
    ('output signal "Some(11)"', "segmentation_fault2"),
    ("AddressSanitizer", "address_sanitizer"),
    ("ThreadSanitizer", "thread_sanitizer"),
    ("LeakSanitizer", "leak_sanitizer"),
    ("assertion `", "assertion"),
    ("assertion failed:", "assertion_failed"),
    ("out of range for", "out_of_range"),
    ("panicked at ", "panicked"),
    ("RUST_BACKTRACE", "panic"),
    ('output status "Some(124)"', "timeout"),
    ("Fix introduced a syntax error", "syntax_error"),
)

_REPORT_TEMPLATE = """$CNT_TEXT

command
```
$COMMAND
```

App was compiled with nightly rust compiler to be able to use address sanitizer
(You can ignore this part if there is no address sanitizer error)
On Ubuntu 24.04, the commands to compile were:
```
rustup default nightly
rustup component add rust-src --toolchain nightly-x86_64-unknown-linux-gnu
rustup component add llvm-tools-preview --toolchain nightly-x86_64-unknown-linux-gnu

export RUST_BACKTRACE=1 # or full depending on project
export ASAN_SYMBOLIZER_PATH=$(which llvm-symbolizer-18)
export ASAN_OPTIONS=symbolize=1
RUSTFLAGS="-Zsanitizer=address" cargo +nightly build --target x86_64-unknown-linux-gnu
```

cause this
```
$ERROR
```
"""


def remove_non_crashing_files(settings: Setting, obj: Any) -> None:
    """Run the program on every saved broken file again and keep only those still crashing."""
    obj.remove_non_parsable_files(settings.broken_files_dir)
    broken_files = collect_broken_files(settings)[:MAX_FILES]
    log.info("Found %d broken files to check", len(broken_files))

    remove_non_crashing(broken_files, settings, obj, 1)

    log.info("After checking %d broken files left", len(collect_broken_files(settings)))


def _recheck(full_name: str, number: int, total: int, step: int, settings: Setting, obj: Any) -> tuple[str, str] | None:
    start_text = Path(full_name).read_bytes()
    if number % 100 == 0:
        log.info("_____ Processed already %d / %d (step %d)", number, total, step)
    result = execute_command_and_connect_output(obj, full_name)
    if settings.debug_print_results:
        log.info("File %s\n%s", full_name, result.output)
    if result.is_broken():
        Path(full_name).write_bytes(start_text)
        return full_name, result.output.strip()
    log.info("File %s is not broken, and will be removed", full_name)
    Path(full_name).unlink()
    return None


def remove_non_crashing(broken_files: Sequence[str], settings: Setting, obj: Any, step: int) -> list[tuple[str, str]]:
    """Remove the files that no longer crash the program and report the rest; return those still broken."""
    total = len(broken_files)
    with ThreadPoolExecutor() as executor:
        results = executor.map(
            lambda numbered: _recheck(numbered[1], numbered[0], total, step, settings, obj),
            enumerate(broken_files),
        )
        still_broken = [item for item in results if item is not None]

    remove_and_create_entire_folder(settings.temp_folder)
    save_results_to_file(obj, settings, still_broken)
    return still_broken


def classify_error(result: str) -> str:
    """Return a short name for the kind of crash the output shows, or an empty string."""
    return next((name for marker, name in _ERROR_TYPES if marker in result), "")


def build_report(content: bytes, command_str: str, result: str) -> str:
    """Build the text of a report about a file that crashes the program."""
    try:
        content_string = content.decode("utf-8")
    except UnicodeDecodeError:
        cnt_text = "File content is binary, so is available only in zip file"
    else:
        cnt_text = (
            "File content(at the bottom should be attached raw, not formatted file - github removes some "
            "non-printable characters, so copying from here may not work):\n"
            f"```\n{content_string}\n```"
        )
    return (
        _REPORT_TEMPLATE.replace("$CNT_TEXT", cnt_text)
        .replace("$COMMAND", command_str)
        .replace("$ERROR", result)
        .replace("\n\n```", "\n```")
    )


def save_results_to_file(obj: Any, settings: Setting, content: Sequence[tuple[str, str]]) -> None:
    """Write a report folder for each broken file with its output."""
    log.info("Saving results to file")
    command_str = collect_command_to_string(obj.get_full_command(_PLACEHOLDER_FILE))

    for file_name, result in content:
        data = Path(file_name).read_bytes()
        suffix = Path(file_name).suffix
        if not suffix:
            raise ValueError(f"File {file_name} has no extension")
        extension = suffix[1:]
        command_with_extension = command_str.replace(_PLACEHOLDER_FILE, f"{_PLACEHOLDER_FILE}.{extension}")

        folder = Path(
            f"{settings.temp_folder}/{settings.name}_{classify_error(result)}__({len(data)} bytes) - "
            f"{random.getrandbits(64)}"
        )
        folder.mkdir(parents=True, exist_ok=True)

        (folder / "to_report.txt").write_text(build_report(data, command_with_extension, result), encoding="utf-8")
        (folder / f"problematic_file.{extension}").write_bytes(data)
        zip_file(str(folder / "compressed.zip"), Path(file_name).name, data)


def collect_broken_files(settings: Setting) -> list[str]:
    """Return the files in the broken files folder with one of the wanted extensions."""
    found = []
    for root, dirs, files in os.walk(settings.broken_files_dir):
        dirs.sort()
        for name in sorted(files):
            path = os.path.join(root, name)
            if not os.path.isfile(path):
                continue
            lowered = path.lower()
            if any(lowered.endswith(extension) for extension in settings.extensions):
                found.append(path)
    return found