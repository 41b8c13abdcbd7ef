"""Standalone fuzzing loop for the red_knot type checker."""

import logging
import os
import random
import shutil
import subprocess
import sys
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .common import collect_output

log = logging.getLogger(__name__)

INPUT_FILES_DIR = "input"
FILES_TO_TEST_DIR = "temp1"
TEMP_TEST_DIR = "temp2"
BROKEN_FILES_DIR = "broken"

RUN_MINIMIZER = True
MAX_FILES = 1_000_000_000
MAX_FILES_IN_GROUP = 1000
CHECKED_ITEMS_IN_GROUP = 400
CREATE_FILES_PER_RUN = 1
MINIMIZER_ATTEMPTS = 200
DEFAULT_MAX_TIME = 600

INVALID_DATA: tuple[str, ...] = ("RUST_BACKTRACE",)
IGNORED_DATA: tuple[str, ...] = ("Box<dyn Any>",)

_CLASSIFICATION: tuple[tuple[str, str], ...] = (
    ("is always 'load' but got: 'Invalid'", "invalid"),
    ("assertion `left == right` failed", "assertion_left_right"),
    ("no entry found for key", "no_entry"),
    ("Expected the symbol table to create a symbol for every Name node", "expected_symbol"),
    ("previous.is_none", "previous"),
)

_SEPARATOR_LINE = "-+" * 38

_start_time = time.monotonic()
_max_time: int | None = None


def _set_max_time(seconds: int) -> None:
    global _start_time, _max_time
    _start_time = time.monotonic()
    _max_time = seconds


def _time_exceeded() -> bool:
    if _max_time is None:
        return False
    return int(time.monotonic() - _start_time) > _max_time


def _run(args: Sequence[str]) -> str:
    return collect_output(subprocess.run(list(args), capture_output=True))


def contains_data(data: str, items: Sequence[str]) -> bool:
    """Tell whether any of the items occurs in the data."""
    return any(item in data for item in items)


def contains_broken_data(data: str) -> bool:
    """Tell whether the output shows a crash that is not ignored."""
    return contains_data(data, INVALID_DATA) and not contains_data(data, IGNORED_DATA)


def classify_output(output: str) -> str:
    """Return a short name for the kind of crash in the output."""
    return next((name for marker, name in _CLASSIFICATION if marker in output), "other")


def _chunked(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


def split_into_chunks(files: Sequence[str], threads: int) -> list[list[str]]:
    """Split files into work chunks, about one per thread but never larger than the group limit."""
    if threads <= 0:
        raise ValueError(f"Number of threads must be positive, got {threads}")
    if len(files) // threads < MAX_FILES_IN_GROUP:
        return _chunked(files, len(files) // threads + 1)
    return _chunked(files, MAX_FILES_IN_GROUP)


def create_broken_files(input_dir: str, output_dir: str) -> str:
    """Run the generator of broken files from the input folder into the output folder."""
    input_c = str(Path(input_dir).resolve(strict=True))
    output_c = str(Path(output_dir).resolve(strict=True))
    print(f"Creating broken files from {input_c} to {output_c}")
    return _run(
        [
            "create_broken_files",
            "--input-path",
            input_c,
            "--output-path",
            output_c,
            "--number-of-broken-files",
            str(CREATE_FILES_PER_RUN),
            "-m",
        ]
    )


def run_red_knot(folder: str) -> str:
    """Run red_knot on a folder and return its joined output."""
    return _run(["red_knot", "--current-directory", folder])


def run_minimizer(input_file: str, output_file: str, output_folder: str) -> str:
    """Minimize a crashing file with the external minimizer and return its output."""
    args = [
        "minimizer",
        "--input-file",
        input_file,
        "--output-file",
        output_file,
        "--command",
        f"red_knot --current-directory {output_folder}",
        "--attempts",
        str(MINIMIZER_ATTEMPTS),
    ]
    for item in INVALID_DATA:
        args += ["--broken-info", item]
    for item in IGNORED_DATA:
        args += ["--ignored-info", item]
    args += ["-r", "-v"]
    output = _run(args)
    print(output)
    return output


def _suspicious_files(files_to_test: Sequence[str], temp_folder: Path) -> list[str]:
    suspicious: list[str] = []
    for group in _chunked(files_to_test, CHECKED_ITEMS_IN_GROUP):
        if _time_exceeded():
            continue
        for file in group:
            try:
                shutil.copyfile(file, temp_folder / Path(file).name)
            except OSError:
                pass
        if contains_broken_data(run_red_knot(str(temp_folder))):
            suspicious.extend(group)
    return suspicious


def _check_single(file: str, temp_folder: Path, broken_dir: Path) -> None:
    new_file = temp_folder / Path(file).name
    extension = Path(file).suffix[1:]
    try:
        shutil.copyfile(file, new_file)
    except OSError:
        pass
    output = run_red_knot(str(temp_folder))

    if contains_broken_data(output):
        minimized_exists = False
        if RUN_MINIMIZER:
            run_minimizer(file, str(new_file), str(temp_folder))
            output = run_red_knot(str(temp_folder))
            if not contains_broken_data(output):
                print(f"Failed to minimize file, output: {output}", file=sys.stderr)
            minimized_exists = new_file.exists()
        start = classify_output(output)
        random_number = random.getrandbits(64)
        source = new_file if minimized_exists else Path(file)
        shutil.copyfile(source, broken_dir / f"{start}_{random_number}.{extension}")
        (broken_dir / f"{start}_{random_number}.log").write_text(output, encoding="utf-8")

    new_file.unlink()


def check_with_red_knot(files_to_test: Sequence[str], temp_dir: str, broken_dir: str) -> None:
    """Check files in groups with red_knot, then one by one, saving each crashing file."""
    temp_folder = Path(temp_dir) / str(random.getrandbits(64))
    temp_folder.mkdir(parents=True, exist_ok=True)

    files = _suspicious_files(files_to_test, temp_folder)

    shutil.rmtree(temp_folder)
    temp_folder.mkdir(parents=True)

    print(f"Before: {len(files_to_test)} After: {len(files)}")
    if files:
        print(_SEPARATOR_LINE)

    for file in files:
        if _time_exceeded():
            break
        _check_single(file, temp_folder, Path(broken_dir))

    shutil.rmtree(temp_folder)


def _collect_files(directory: str) -> list[str]:
    found: list[str] = []
    for root, dirs, names in os.walk(directory):
        dirs.sort()
        for name in sorted(names):
            path = os.path.join(root, name)
            if os.path.isfile(path):
                found.append(path)
                if len(found) >= MAX_FILES:
                    return found
    return found


def _count_entries(directory: str) -> int:
    return sum(1 + len(dirs) + len(names) for _, dirs, names in os.walk(directory))


def main(argv: Sequence[str] | None = None) -> int:
    """Generate broken Python files and check them with red_knot until the time runs out."""
    arguments = list(sys.argv[1:] if argv is None else argv)
    max_time = int(arguments[0]) if arguments else DEFAULT_MAX_TIME
    _set_max_time(max_time)
    print(f"Max time set to {max_time}")

    threads = os.cpu_count() or 8

    while True:
        if _time_exceeded():
            print("Exceeded time")
            break

        shutil.rmtree(FILES_TO_TEST_DIR, ignore_errors=True)
        shutil.rmtree(TEMP_TEST_DIR, ignore_errors=True)
        for folder in (FILES_TO_TEST_DIR, TEMP_TEST_DIR, BROKEN_FILES_DIR):
            Path(folder).mkdir(parents=True, exist_ok=True)
        if not Path(INPUT_FILES_DIR).exists():
            raise FileNotFoundError(f"Input folder {INPUT_FILES_DIR} does not exist")

        create_broken_files(INPUT_FILES_DIR, FILES_TO_TEST_DIR)

        broken_files = _collect_files(FILES_TO_TEST_DIR)
        if not broken_files:
            print("No files to test", file=sys.stderr)
            return 0

        chunks = split_into_chunks(broken_files, threads)

        def work(numbered: tuple[int, list[str]]) -> None:
            idx, chunk = numbered
            print(f"Starting chunk {idx} with {len(chunk)} files")
            check_with_red_knot(chunk, TEMP_TEST_DIR, BROKEN_FILES_DIR)
            print(f"Ended chunk {idx}")

        with ThreadPoolExecutor(max_workers=threads) as executor:
            list(executor.map(work, enumerate(chunks)))

    print(f"Broken files: {_count_entries(BROKEN_FILES_DIR) // 2}")
    return 0


if __name__ == "__main__":
    sys.exit(main())