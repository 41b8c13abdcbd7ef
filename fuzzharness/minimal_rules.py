"""Reducing ruff crashes to the smallest set of rules and writing reports about them."""

import logging
import os
import random
import subprocess
import zipfile
from collections import Counter
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .common import CommandLine, check_if_app_ends, collect_output, remove_and_create_entire_folder
from .ruff_rules import calculate_ignored_rules
from .settings import NonCustomItems, Setting

log = logging.getLogger(__name__)

MAX_FILE_SIZE = 1000  # bytes
USE_MAX_FILE_SIZE = False

_SEPARATOR = "\n\n///////////////////////////////////////////////////////\n\n"
_REMOVAL_PREFIXES = ("## Removal", "## Removed", "## Deprecation", "## Deprecated")
_DIVIDING_ATTEMPTS = 100
_DIVIDING_MIN_RULES = 6

_FORMAT_TEMPLATE = """Ruff $RUFF_VERSION
```
ruff format *.py
```

file content(at the bottom should be attached raw, not formatted file - github removes some non-printable characters, so copying from here may not work properly):
```
$FILE_CONTENT
```

error
```
$ERROR
```

"""

_LINT_TEMPLATE = """$RUFF_VERSION
```
ruff check *.py --select $RULES_TO_REPLACE --no-cache $RUFF_FIX --preview --output-format concise --isolated
```

file content(at the bottom should be attached raw, not formatted file - github removes some non-printable characters, so copying from here may not work):
```
$FILE_CONTENT
```

error
```
$ERROR
```
"""

_TABLE_BORDER = "+--------------+----------------+\n"
_TABLE_HEADER = "| Rule         | Number         |\n"

_STOP = object()


@dataclass
class _RuleResult:
    rules: list[str]
    file_name: str
    path: str
    output: str
    only_check: bool


def _non_custom_items(settings: Setting) -> NonCustomItems:
    if settings.non_custom_items is None:
        raise ValueError("Settings hold no items of a built-in tool")
    return settings.non_custom_items


def _finish(process: subprocess.Popen) -> subprocess.CompletedProcess:
    stdout, stderr = process.communicate()
    return subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def check_code(settings: Setting, obj: Any) -> None:
    """Run the report mode that suits the configured ruff tool type."""
    tool_type = _non_custom_items(settings).tool_type
    if tool_type in ("lint_check", "lint_check_fix"):
        find_minimal_rules(settings, obj)
    elif tool_type == "format":
        report_problem_with_format(settings, obj)
    elif tool_type == "red_knot":
        return
    else:
        raise ValueError(f"Unknown tool type: {tool_type}")


def report_problem_with_format(settings: Setting, obj: Any) -> None:
    """Check the broken files with the formatter again and write reports for those still broken."""
    files_to_check = collect_broken_files_dir_files(settings)
    ruff_version = obj.get_version()

    def check(path: str) -> tuple[str, str, str] | None:
        file_name = path.split("/")[-1]
        new_name = f"{settings.temp_folder}/{file_name}"
        Path(new_name).write_bytes(Path(path).read_bytes())
        all_str = collect_output(_finish(obj.run_command(new_name)))
        if not obj.is_broken(all_str):
            log.info("File %s (%s) is not broken", new_name, path)
            return None
        log.info("File %s ______________ (%s) is broken", new_name, path)
        return file_name, path, all_str

    with ThreadPoolExecutor() as executor:
        collected = [item for item in executor.map(check, files_to_check) if item is not None]

    remove_and_create_entire_folder(settings.temp_folder)
    save_results_to_file_format(settings, collected, ruff_version)


def format_report(file_code: str, output: str, ruff_version: str) -> str:
    """Build the text of a report about a formatter problem."""
    header = "Panic when formatting file" if "panicked" in output else "Formatter cause problem"
    body = (
        _FORMAT_TEMPLATE.replace("$FILE_CONTENT", file_code)
        .replace("$ERROR", output)
        .replace("$RUFF_VERSION", ruff_version)
        .replace("\n\n```", "\n```")
    )
    return header + _SEPARATOR + body


def save_results_to_file_format(
    settings: Setting, collected_items: Sequence[tuple[str, str, str]], ruff_version: str
) -> None:
    """Write a report folder for each file that broke the formatter."""
    for file_name, name, output in collected_items:
        file_code = Path(name).read_text(encoding="utf-8")
        file_stem = file_name.split(".")[0]
        folder = Path(
            f"{settings.temp_folder}/FORMAT_({_byte_length(file_code)} bytes) - {file_stem} __ "
            f"{random.getrandbits(64)}"
        )
        folder.mkdir(parents=True, exist_ok=True)
        (folder / "to_report.txt").write_text(format_report(file_code, output, ruff_version), encoding="utf-8")
        (folder / "python_code.py").write_text(file_code, encoding="utf-8")
        zip_file(str(folder / "raw_file.zip"), file_name, file_code.encode("utf-8"))


def zip_file(zip_filename: str, file_name: str, file_code: bytes) -> None:
    """Write a zip archive holding one deflated file."""
    info = zipfile.ZipInfo(file_name)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o100755 << 16
    with zipfile.ZipFile(zip_filename, "w") as archive:
        archive.writestr(info, file_code)


class _RuleSearch:
    """Runs ruff on one file with chosen rules, restoring the file around each run."""

    def __init__(self, new_name: str, original: bytes, obj: Any, only_check: bool, settings: Setting) -> None:
        self.new_name = new_name
        self.original = original
        self.obj = obj
        self.only_check = only_check
        self.settings = settings

    def restore(self) -> None:
        Path(self.new_name).write_bytes(self.original)

    def crashes(self, rules: list[str]) -> tuple[bool, str]:
        self.restore()
        result = check_if_rule_file_crashing(self.new_name, rules, self.obj, self.only_check, self.settings)
        self.restore()
        return result


def _by_existing_in_output(
    search: _RuleSearch, valid: list[str], out: str, all_rules: Sequence[str]
) -> tuple[list[str], str, tuple[int, int] | None]:
    start_len = len(valid)
    rules_in_output = rules_mentioned_in_output(out, all_rules)
    if not rules_in_output:
        return valid, out, None
    crashing, output = search.crashes(rules_in_output)
    if not crashing:
        return valid, out, None
    return rules_in_output, output, (len(rules_in_output), start_len)


def _by_dividing(search: _RuleSearch, valid: list[str], out: str) -> tuple[list[str], str, int]:
    attempts_left = _DIVIDING_ATTEMPTS
    while attempts_left != 0:
        search.restore()
        attempts_left -= 1
        if len(valid) <= _DIVIDING_MIN_RULES:
            break
        rules_to_test = random.sample(valid, len(valid))[: len(valid) // 2]
        rules_to_test.sort()
        crashing, output = search.crashes(rules_to_test)
        if crashing:
            valid, out = rules_to_test, output
    return valid, out, _DIVIDING_ATTEMPTS - attempts_left


def _one_by_one(search: _RuleSearch, valid: list[str], out: str) -> tuple[list[str], str, int]:
    checks = 0
    rules_to_test = list(valid)
    index = len(valid)
    while index != 0:
        checks += 1
        search.restore()
        if len(valid) <= 1:
            break
        index -= 1
        del rules_to_test[index]
        crashing, output = search.crashes(rules_to_test)
        if crashing:
            valid, out = list(rules_to_test), output
        else:
            rules_to_test = list(valid)
    return valid, out, checks


def _minimize_file(
    path: str, number: int, total: int, all_rules: list[str], obj: Any, settings: Setting
) -> Any:
    if check_if_app_ends():
        return _STOP
    if number % 100 == 0:
        log.info("_____ Processed already %d / %d", number, total)

    file_name = path.split("/")[-1]
    new_name = f"{settings.temp_folder}/{random.getrandbits(64)}.py"
    original = Path(path).read_bytes()

    fix_search = _RuleSearch(new_name, original, obj, False, settings)
    check_search = _RuleSearch(new_name, original, obj, True, settings)
    happens_with_fix, fix_output = fix_search.crashes(all_rules)
    happens_with_check, check_output = check_search.crashes(all_rules)

    if not happens_with_fix and not happens_with_check:
        log.info("File %s (%s) is not broken", new_name, path)
        return None

    out = fix_output if happens_with_fix else check_output
    only_check = happens_with_check
    search = check_search if only_check else fix_search

    valid, out, initial = _by_existing_in_output(search, list(all_rules), out, all_rules)
    valid, out, group_checks = _by_dividing(search, valid, out)
    valid, out, rules_checks = _one_by_one(search, valid, out)
    log.info(
        "For file %s (%s initial check, %d group checks + %d rules checks) valid rules are: %s",
        path,
        initial,
        group_checks,
        rules_checks,
        ",".join(valid),
    )
    search.restore()
    return _RuleResult(valid, file_name, path, out, only_check)


def find_minimal_rules(settings: Setting, obj: Any) -> None:
    """For each broken file find the smallest set of rules that still crashes ruff, and report it."""
    temp_folder = settings.temp_folder
    remove_and_create_entire_folder(temp_folder)

    obj.remove_non_parsable_files(settings.broken_files_dir)
    files_to_check = collect_broken_files_dir_files(settings)
    old_files_number = len(files_to_check)

    if USE_MAX_FILE_SIZE:
        files_to_check = [path for path in files_to_check if _size_or_zero(path) <= MAX_FILE_SIZE]
        log.info(
            "Using only %d files from %d files, that are smaller than %d bytes",
            len(files_to_check),
            old_files_number,
            MAX_FILE_SIZE,
        )
    else:
        log.info("Using all %d files from %d files", len(files_to_check), old_files_number)

    all_rules = collect_all_ruff_rules()
    total = len(files_to_check)

    collected: list[_RuleResult] = []
    with ThreadPoolExecutor() as executor:
        results = executor.map(
            lambda numbered: _minimize_file(numbered[1], numbered[0], total, all_rules, obj, settings),
            enumerate(files_to_check),
        )
        for result in results:
            if result is _STOP:
                break
            if result is not None:
                collected.append(result)

    remove_and_create_entire_folder(temp_folder)

    ruff_version = obj.get_version()
    save_results_to_file(
        settings,
        [(item.rules, item.file_name, item.path, item.output, item.only_check) for item in collected],
        ruff_version,
    )

    counts = Counter(rule for item in collected for rule in item.rules)
    items = sorted(sorted(counts.items()), key=lambda pair: -pair[1])
    if items:
        draw_table(items, temp_folder)


def _size_or_zero(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError:
        return 0


def rules_mentioned_in_output(output: str, all_rules: Sequence[str]) -> list[str]:
    """Return the rules named on the first output line that mentions rule codes."""
    line = next((line for line in output.splitlines() if "with rule codes" in line), None)
    if line is None:
        return []
    return [rule for rule in all_rules if f" {rule}," in line or f" {rule}:" in line]


def format_table(items: Sequence[tuple[str, int]]) -> str:
    """Render rules with their counts as a text table."""
    rows = "".join(f"| {rule:<12} | {number:<14} |\n" for rule, number in items)
    return _TABLE_BORDER + _TABLE_HEADER + _TABLE_BORDER + rows + _TABLE_BORDER


def draw_table(items: Sequence[tuple[str, int]], temp_folder: str) -> None:
    """Write the table of rules to table.txt in the folder and print it."""
    table = format_table(items)
    Path(temp_folder, "table.txt").write_text(table + "\n", encoding="utf-8")
    print(table)


def _problem_type(output: str) -> str:
    if "Failed to converge after" in output:
        return "loop"
    if "panicked" in output:
        return "panic"
    return "autofix"


_PROBLEM_DESCRIPTIONS = {
    "loop": "cause infinite loop",
    "panic": "cause panic",
    "autofix": "cause autofix error",
}


def lint_report(rules: Sequence[str], file_code: str, output: str, only_check: bool, ruff_version: str) -> str:
    """Build the text of a report about rules that break the linter."""
    header = "Checking file with rule" if only_check else "Fixing file with rule"
    if len(rules) > 1:
        header += "s"
    header += f" {', '.join(rules)} {_PROBLEM_DESCRIPTIONS[_problem_type(output)]}"

    error = "\n".join(line for line in output.splitlines() if "has been remapped to" not in line)
    fix_needed = "" if only_check else "--fix --unsafe-fixes"
    body = (
        _LINT_TEMPLATE.replace("  ", " ")
        .replace("$RUFF_FIX", fix_needed)
        .replace("$RULES_TO_REPLACE", ",".join(rules))
        .replace("$FILE_CONTENT", file_code)
        .replace("$RUFF_VERSION", ruff_version)
        .replace("$ERROR", error)
        .replace("\n\n```", "\n```")
    )
    return header + _SEPARATOR + body


def save_results_to_file(
    settings: Setting,
    rules_with_names: Sequence[tuple[list[str], str, str, str, bool]],
    ruff_version: str,
) -> None:
    """Write a report folder for each file with the rules that break the linter on it."""
    for rules, file_name, name, output, only_check in rules_with_names:
        file_code = Path(name).read_text(encoding="utf-8")
        rule_str = "_".join(rules[:10])
        start_text = "CHECK" if only_check else "FIX"
        folder = Path(
            f"{settings.temp_folder}/{start_text}_{rule_str}_{_problem_type(output)}___"
            f"({_byte_length(file_code)} bytes) - {random.getrandbits(64)}"
        )
        folder.mkdir(parents=True, exist_ok=True)
        report = lint_report(rules, file_code, output, only_check, ruff_version)
        (folder / "to_report.txt").write_text(report, encoding="utf-8")
        (folder / "python_code.py").write_text(file_code, encoding="utf-8")
        zip_file(str(folder / "python_compressed.zip"), file_name, file_code.encode("utf-8"))


def parse_ruff_rules(text: str) -> list[str]:
    """Extract the sorted codes of active rules from the output of 'ruff rule --all'."""
    lines = [
        line
        for line in text.split("\n")
        if line.startswith(_REMOVAL_PREFIXES) or (line.startswith("# ") and line.endswith(")"))
    ]
    rules: list[str] = []
    for line in lines:
        start = line.find("(")
        if start != -1:
            end = line.find(")", start)
            if end != -1:
                rule = line[start + 1 : end]
                if rule.upper() != rule:
                    continue
                rules.append(rule)
        if line.startswith(_REMOVAL_PREFIXES) and rules:
            rules.pop()
    rules.sort()
    return rules


def collect_all_ruff_rules() -> list[str]:
    """Ask ruff for all its rules and return their codes."""
    output = CommandLine("ruff", ["rule", "--all"]).run()
    return parse_ruff_rules((output.stdout or b"").decode("utf-8"))


def check_if_rule_file_crashing(
    test_file: str, rules: Sequence[str], obj: Any, only_check: bool, settings: Setting
) -> tuple[bool, str]:
    """Run ruff on the file with only the given rules and tell whether it crashed, with its output."""
    if not rules:
        raise ValueError("At least one rule is needed")
    command = CommandLine(
        "ruff", ["check", test_file, "--select", ",".join(rules), "--preview", "--output-format", "concise"]
    )
    if only_check:
        command.add("--no-cache")
    else:
        command.add("--fix", "--unsafe-fixes", "--no-cache")

    app_config = _non_custom_items(settings).app_config
    if app_config:
        command.add("--config", app_config)
    else:
        command.add("--isolated")

    ignored_rules = calculate_ignored_rules()
    if ignored_rules:
        command.add("--ignore", ignored_rules)

    all_std = collect_output(command.run())
    if settings.debug_print_results:
        log.info("%s", all_std)
    return obj.is_broken(all_std), all_std


def collect_broken_files_dir_files(settings: Setting) -> list[str]:
    """Return the Python files found in the broken files folder."""
    found = []
    for root, dirs, files in os.walk(settings.broken_files_dir):
        dirs.sort()
        for name in sorted(files):
            path = os.path.join(root, name)
            if name.endswith(".py") and os.path.isfile(path):
                found.append(path)
    return found