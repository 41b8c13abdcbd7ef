import sys
import zipfile
from types import SimpleNamespace

import pytest

from fuzzharness.common import CommandLine, collect_command_to_string
from fuzzharness.program import ProgramConfig
from fuzzharness.remove_crashing import (
    build_report,
    classify_error,
    collect_broken_files,
    remove_non_crashing,
    remove_non_crashing_files,
    save_results_to_file,
)
from fuzzharness.settings import StabilityMode

SCRIPT = "import sys;d=open(sys.argv[1]).read();print('CRASH' if 'bad' in d else 'ok')"


class ScriptProgram(ProgramConfig):
    def broken_items(self):
        return ["CRASH"]

    def ignored_items(self):
        return []

    def is_broken(self, content):
        return "CRASH" in content

    def stability_mode(self):
        return StabilityMode.NONE

    def basic_run_command(self):
        return CommandLine(sys.executable, ["-c", SCRIPT])

    def broken_file_creator(self):
        raise RuntimeError("not used")


@pytest.fixture
def settings(tmp_path):
    broken = tmp_path / "broken"
    broken.mkdir()
    temp = tmp_path / "temp"
    temp.mkdir()
    return SimpleNamespace(
        name="tool",
        temp_folder=str(temp),
        broken_files_dir=str(broken),
        extensions=[".py"],
        error_when_found_signal=False,
        allowed_error_statuses=[],
        ignore_timeout_errors=False,
        timeout=0,
        debug_print_results=False,
    )


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("memory allocation of 100 bytes failed", "memory_failure"),
        ("thread 'main' has overflowed its stack overflow", "stack_overflow"),
        ("attempt to add with overflow", "overflow_a"),
        ("called `Option::unwrap()` on a `None` value", "option_unwrap"),
        ('output status "Some(124)"', "timeout"),
        ("nothing interesting", ""),
    ],
)
def test_classify_error(output, expected):
    assert classify_error(output) == expected


def test_classify_error_takes_first_matching_marker():
    assert classify_error("AddressSanitizer: out of memory") == "asan_out_of_memory"


def test_build_report_with_text_content():
    report = build_report(b"print(1)", "tool TEST___FILE.py", "boom")
    assert "```\nprint(1)\n```" in report
    assert "command\n```\ntool TEST___FILE.py\n```" in report
    assert report.endswith("cause this\n```\nboom\n```\n")
    assert "\n\n```" not in report


def test_build_report_with_binary_content():
    report = build_report(b"\xff\xfe\x00", "cmd", "err")
    assert report.startswith("File content is binary, so is available only in zip file")


def test_collect_broken_files_filters_extensions(settings, tmp_path):
    broken = tmp_path / "broken"
    (broken / "a.py").write_text("x")
    (broken / "B.PY").write_text("x")
    (broken / "c.txt").write_text("x")
    found = collect_broken_files(settings)
    assert sorted(p.rsplit("/", 1)[-1] for p in found) == ["B.PY", "a.py"]


def test_remove_non_crashing_keeps_only_crashing(settings, tmp_path):
    broken = tmp_path / "broken"
    bad = broken / "bad.py"
    good = broken / "good.py"
    bad.write_text("bad = 1\n")
    good.write_text("fine = 1\n")
    obj = ScriptProgram(settings)

    results = remove_non_crashing([str(bad), str(good)], settings, obj, 1)

    assert [name for name, _ in results] == [str(bad)]
    assert "CRASH" in results[0][1]
    assert bad.read_text() == "bad = 1\n"
    assert not good.exists()

    folders = list((tmp_path / "temp").iterdir())
    assert len(folders) == 1
    folder = folders[0]
    assert folder.name.startswith("tool___(8 bytes) - ")
    assert (folder / "problematic_file.py").read_bytes() == b"bad = 1\n"
    with zipfile.ZipFile(folder / "compressed.zip") as archive:
        assert archive.read("bad.py") == b"bad = 1\n"


def test_remove_non_crashing_files_counts(settings, tmp_path):
    broken = tmp_path / "broken"
    (broken / "one.py").write_text("bad\n")
    (broken / "two.py").write_text("good\n")
    remove_non_crashing_files(settings, ScriptProgram(settings))
    assert [p.rsplit("/", 1)[-1] for p in collect_broken_files(settings)] == ["one.py"]


def test_save_results_report_holds_command(settings, tmp_path):
    source = tmp_path / "sample.py"
    source.write_text("x = 1\n")
    obj = ScriptProgram(settings)
    save_results_to_file(obj, settings, [(str(source), "panicked at src/lib.rs")])

    folders = list((tmp_path / "temp").iterdir())
    assert len(folders) == 1
    folder = folders[0]
    assert folder.name.startswith("tool_panicked__(6 bytes) - ")

    command_str = collect_command_to_string(obj.get_full_command("TEST___FILE.py"))
    assert "TEST___FILE.py" in command_str
    expected = build_report(b"x = 1\n", command_str, "panicked at src/lib.rs")
    assert (folder / "to_report.txt").read_text() == expected


def test_save_results_requires_extension(settings, tmp_path):
    source = tmp_path / "noext"
    source.write_text("x")
    with pytest.raises(ValueError):
        save_results_to_file(ScriptProgram(settings), settings, [(str(source), "err")])