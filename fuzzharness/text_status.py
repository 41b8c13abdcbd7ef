"""Finding broken files by the output and exit status of the tested program."""

import itertools
import logging
import random
import shutil
from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import humanize

from .common import (
    check_if_app_ends,
    close_app_if_timeouts,
    collect_files,
    execute_command_and_connect_output,
    execute_command_on_pack_of_files,
    generate_files,
    minimize_new,
    remove_and_create_entire_folder,
)
from .program import set_asan_envs
from .settings import CheckGroupFileMode, Setting

log = logging.getLogger(__name__)


def _timed_out() -> bool:
    if check_if_app_ends():
        log.info("Timeout reached, exiting")
        return True
    return False


def find_broken_files_by_text_status(settings: Setting, obj: Any) -> None:
    """Generate files in loops and save those the tested program crashes on."""
    log.info("Starting finding broken files by text status")
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
        start_file_size = len(files)
        log.info("Collected %d files with size %s", start_file_size, humanize.naturalsize(files_size, binary=True))

        if settings.grouping > 1 and obj.files_group_mode() is not CheckGroupFileMode.NONE:
            log.info("Started to check files in groups of %d elements", settings.grouping)
            set_asan_envs(True)
            try:
                files = check_files_in_groups(files, settings, obj)
            finally:
                set_asan_envs(False)
            log.info("After grouping left %d files to check out of all %d", len(files), start_file_size)
        else:
            log.info("No grouping")

        if _timed_out():
            break
        broken = check_files(files, settings, obj)
        all_broken += broken
        log.info("Found %d broken files (%d in all iterations)", broken, all_broken)

    log.info("Found %d broken files in all iterations", all_broken)


def _chunks(items: Sequence[str], size: int) -> Iterator[list[str]]:
    iterator = iter(items)
    while chunk := list(itertools.islice(iterator, size)):
        yield chunk


def _extension(file_name: str) -> str:
    suffix = Path(file_name).suffix
    if not suffix:
        raise ValueError(f"File {file_name} has no extension")
    return suffix[1:]


def _copy_numbered(files: Sequence[str], folder: Path) -> list[str]:
    folder.mkdir(parents=True, exist_ok=True)
    copies = []
    for idx, file_name in enumerate(files):
        target = folder / f"{idx}.{_extension(file_name)}"
        shutil.copyfile(file_name, target)
        copies.append(str(target))
    return copies


def _check_group(group: list[str], number: int, total: int, settings: Setting, obj: Any) -> list[str] | None:
    if number % 10 == 0:
        log.info("+++++ %d / %d", number, total)
    if check_if_app_ends():
        return None

    random_folder = Path(settings.temp_folder) / str(random.getrandbits(64))
    temp_files = _copy_numbered(group, random_folder)
    pack = temp_files if obj.files_group_mode() is CheckGroupFileMode.BY_FILES_GROUP else []
    result = execute_command_on_pack_of_files(obj, str(random_folder), pack)
    shutil.rmtree(random_folder)

    if settings.debug_print_results:
        log.info("%s", result.output)

    if not result.is_broken():
        return []

    log.info("Group %d is broken", number)
    log.info("Command - %s", result.command_str)
    log.info("Output: %s", result.output)
    result.debug_print()
    _copy_numbered(group, Path(settings.custom_folder_path) / str(random.getrandbits(64)))
    return group


def check_files_in_groups(files: list[str], settings: Setting, obj: Any) -> list[str]:
    """Run the tested program on groups of files and return the files of the broken groups."""
    if obj.files_group_mode() is CheckGroupFileMode.NONE:
        return files

    total = len(files) // settings.grouping + 1
    log.info("Started to check files in groups of %d elements, %d groups", settings.grouping, total)

    still_broken: list[str] = []
    with ThreadPoolExecutor() as executor:
        results = executor.map(
            lambda numbered: _check_group(numbered[1], numbered[0], total, settings, obj),
            enumerate(_chunks(files, settings.grouping)),
        )
        for group in results:
            if group is None:
                break
            still_broken.extend(group)

    close_app_if_timeouts()
    remove_and_create_entire_folder(settings.temp_folder)
    return still_broken


def _check_one(full_name: str, number: int, total: int, settings: Setting, obj: Any) -> bool | None:
    if number % 1000 == 0:
        log.info("_____ %d / %d", number, total)
    if check_if_app_ends():
        return None
    result = execute_command_and_connect_output(obj, full_name)
    if settings.debug_print_results:
        log.info("%s", result.output)
    if not result.is_broken():
        return False
    new_file_name = obj.validate_output_and_save_file(full_name, result.output)
    if new_file_name is not None and settings.minimize_output:
        minimize_new(obj, new_file_name)
    return True


def check_files(files: list[str], settings: Setting, obj: Any) -> int:
    """Run the tested program on each file, save the broken ones and return how many there were."""
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