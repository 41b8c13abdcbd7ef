"""Command line entry point of the fuzzing harness."""

import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .common import calculate_number_of_files, check_files_number, set_timeout
from .custom import CustomProgram
from .different_output import find_broken_files_by_different_output
from .minimal_rules import check_code
from .program import set_asan_envs
from .remove_crashing import remove_non_crashing_files
from .ruff import RuffProgram
from .settings import Mode, Setting, StabilityMode, load_settings
from .text_status import find_broken_files_by_text_status

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 999_999_999_999_999
SETTINGS_FILE = "fuzz_settings.toml"


def get_object(settings: Setting) -> Any:
    """Create the program under test that the settings describe."""
    if settings.current_mode is Mode.RUFF:
        return RuffProgram(settings, settings.non_custom_items)
    if settings.current_mode is Mode.CUSTOM:
        return CustomProgram(settings, settings.custom_items)
    raise ValueError(f"Invalid mode {settings.current_mode}")


def parse_timeout(argv: Sequence[str]) -> int:
    """Return the timeout in seconds given as the first argument, or the default."""
    if not argv:
        return DEFAULT_TIMEOUT
    timeout = int(argv[0])
    if timeout < 0:
        raise ValueError(f"Timeout must not be negative, got {timeout}")
    return timeout


def main(argv: Sequence[str] | None = None) -> int:
    """Run the harness in the mode the settings file selects."""
    arguments = list(sys.argv[1:] if argv is None else argv)
    set_asan_envs(False)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    timeout = parse_timeout(arguments)
    log.info("Timeout set to %d seconds", timeout)
    set_timeout(timeout)

    settings = load_settings(SETTINGS_FILE)
    obj = get_object(settings)
    obj.init()

    for folder in (settings.temp_folder, settings.broken_files_dir, settings.custom_folder_path):
        Path(folder).mkdir(parents=True, exist_ok=True)

    if settings.remove_non_crashing_items_from_broken_files:
        log.info("RUNNING REMOVE NON CRASHING FILES")
        remove_non_crashing_files(settings, obj)
        return 0
    if settings.find_minimal_rules:
        log.info("RUNNING MINIMAL RULES")
        check_code(settings, obj)
        return 0

    check_files_number("Valid input dir", settings.valid_input_files_dir)
    check_files_number("Broken files dir", settings.broken_files_dir)
    check_files_number("Temp possible broken files dir", settings.temp_possible_broken_files_dir)

    for folder in (settings.valid_input_files_dir, settings.broken_files_dir):
        if not Path(folder).exists():
            raise FileNotFoundError(f"Folder {folder} does not exist")

    log.info("Found %d files in valid input dir", calculate_number_of_files(settings.valid_input_files_dir))

    if settings.check_for_stability and obj.stability_mode() is not StabilityMode.NONE:
        find_broken_files_by_different_output(settings, obj)
    else:
        find_broken_files_by_text_status(settings, obj)
    return 0


if __name__ == "__main__":
    sys.exit(main())