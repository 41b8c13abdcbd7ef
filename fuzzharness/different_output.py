"""Finding files on which repeated runs of the tested program give different results."""

import itertools
import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import humanize

from .common import (
    check_if_app_ends,
    collect_files,
    execute_command_and_connect_output,
    generate_files,
    remove_and_create_entire_folder,
)
from .settings import Setting, StabilityMode

log = logging.getLogger(__name__)

_FILE_MODES = (StabilityMode.OUTPUT_CONTENT, StabilityMode.FILE_CONTENT)
_OUTPUT_MODES = (StabilityMode.OUTPUT_CONTENT, StabilityMode.CONSOLE_OUTPUT)


def _timed_out() -> bool:
    if check_if_app_ends():
        log.info("Timeout reached, exiting")
        return True
    return False


def find_broken_files_by_different_output(settings: Setting, obj: Any) -> None:
    """Generate files in loops and save those on which the program behaves unstably."""
    log.info("Starting finding broken files by different output")
    all_broken = 0
    loop_number = settings.loop_number

    for i in range(1, loop_number + 1):
        log.info("Starting loop %d out of all %d", i, loop_number)
        if _timed_out():
            break

        log.info("Removing old files")
        remove_and_create_entire_folder(settings.temp_possible_broken_files_dir)
        log.info("So - generating files from valid input files dir")
        generate_files(obj, settings)
        log.info("generated files")
        if _timed_out():
            break

        log.info("Removing non parsable files")
        obj.remove_non_parsable_files(settings.temp_possible_broken_files_dir)
        log.info("Removed non parsable files")
        if _timed_out():
            break

        log.info("Collecting files")
        files, files_size = collect_files(settings)
        log.info("Collected %d files with size %s", len(files), humanize.naturalsize(files_size, binary=True))
        if _timed_out():
            break

        broken = check_files_stability(files, settings, obj)
        all_broken += broken
        log.info("Found %d broken files (%d in all iterations)", broken, all_broken)

    log.info("Found %d broken files in all iterations", all_broken)


def runs_differ(values: Sequence[Any]) -> bool:
    """Tell whether any two neighbouring values differ."""
    return any(first != second for first, second in itertools.pairwise(values))


def _check_one(full_name: str, number: int, total: int, settings: Setting, obj: Any) -> bool | None:
    if number % 100 == 0:
        log.info("_____ %d / %d", number, total)
    if check_if_app_ends():
        return None

    mode = obj.stability_mode()
    path = Path(full_name)
    file_content = path.read_bytes()
    outputs: list[str] = []
    contents_after: list[bytes] = []
    for _ in range(settings.stability_runs):
        result = execute_command_and_connect_output(obj, full_name)
        if settings.debug_print_results:
            log.info("%s", result.output)
        if mode in _FILE_MODES:
            contents_after.append(path.read_bytes())
        if mode in _OUTPUT_MODES:
            outputs.append(result.output)
        path.write_bytes(file_content)

    if runs_differ(contents_after) or runs_differ(outputs):
        obj.validate_txt_and_save_file(full_name, outputs)
        return True
    return False


def check_files_stability(files: Sequence[str], settings: Setting, obj: Any) -> int:
    """Run the program several times on each file, save unstable ones and return how many there were."""
    if obj.stability_mode() is StabilityMode.NONE:
        raise ValueError("Stability checking needs a stability mode")
    total = len(files)
    broken = 0
    with ThreadPoolExecutor() as executor:
        results = executor.map(
            lambda numbered: _check_one(numbered[1], numbered[0], total, settings, obj),
            enumerate(files),
        )
        for is_broken in results:
            if is_broken is None:
                break
            broken += is_broken
    return broken