import sys

import pytest

from fuzzharness.common import collect_output
from fuzzharness.custom import CustomProgram
from fuzzharness.langs import Lang
from fuzzharness.program import set_asan_envs
from fuzzharness.settings import CheckGroupFileMode, CustomItems, Setting, StabilityMode

SCRIPT = (
    "import sys\n"
    "for p in sys.argv[1].split(' '):\n"
    "    if 'bad' in open(p).read():\n"
    "        print('CRASH')\n"
)


def make_program(ignored=(), group_mode=CheckGroupFileMode.BY_FILES_GROUP, parts=None):
    items = CustomItems(
        group_mode=group_mode,
        command_parts=parts or [sys.executable, "-c", SCRIPT, "FILE_PATHS_TO_PROVIDE"],
        search_items=["CRASH"],
        ignored_items=list(ignored),
        file_type=Lang.PYTHON,
        stability_mode=StabilityMode.CONSOLE_OUTPUT,
    )
    return CustomProgram(Setting(custom_items=items))


@pytest.fixture(autouse=True)
def reset_asan():
    yield
    set_asan_envs(False)


def test_is_broken_and_ignored():
    program = make_program(ignored=["harmless"])
    assert program.is_broken("xx CRASH yy")
    assert not program.is_broken("nothing")
    assert not program.is_broken("CRASH harmless")
    assert program.ignored_signal_output("harmless")


def test_no_ignored_items_never_ignores():
    program = make_program()
    assert program.ignored_signal_output("anything") is False


def test_items_lists():
    program = make_program(ignored=["skip"])
    assert program.broken_items() == ["CRASH"]
    assert program.ignored_items() == ["skip"]
    assert program.stability_mode() is StabilityMode.CONSOLE_OUTPUT
    assert program.files_group_mode() is CheckGroupFileMode.BY_FILES_GROUP


def test_full_command_replaces_placeholder():
    program = make_program(parts=["tool", "--in", "FILE_PATHS_TO_PROVIDE", "-x"])
    command = program.get_full_command("a.txt")
    assert command.program == "tool"
    assert command.args == ["--in", "a.txt", "-x"]
    assert command.env == {}


def test_full_command_with_asan_envs():
    program = make_program(parts=["tool", "FILE_PATHS_TO_PROVIDE"])
    set_asan_envs(True)
    command = program.get_full_command("a.txt")
    assert command.env["RUST_BACKTRACE"] == "1"
    assert command.env["ASAN_OPTIONS"] == "symbolize=1"


def test_group_command_joins_files():
    program = make_program(parts=["tool", "FILE_PATHS_TO_PROVIDE"])
    set_asan_envs(True)
    command = program.get_group_command(["a.txt", "b.txt"])
    assert command.args == ["a.txt b.txt"]
    assert command.env == {}


def test_missing_custom_items_raises():
    with pytest.raises(ValueError):
        CustomProgram(Setting())


def test_running_command_detects_crash(tmp_path):
    bad = tmp_path / "bad.py"
    bad.write_text("bad")
    good = tmp_path / "good.py"
    good.write_text("fine")
    program = make_program()
    assert program.is_broken(collect_output(program.get_full_command(str(bad)).run()))
    assert not program.is_broken(collect_output(program.get_full_command(str(good)).run()))