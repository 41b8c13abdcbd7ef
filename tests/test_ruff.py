import pytest

from fuzzharness.program import set_asan_envs
from fuzzharness.ruff import RuffProgram, filter_report_output, parse_ruff_failed_files
from fuzzharness.ruff_rules import BROKEN_ITEMS_TO_FIND, BROKEN_ITEMS_TO_IGNORE
from fuzzharness.settings import CheckGroupFileMode, NonCustomItems, Setting, StabilityMode


def make_program(tool_type="lint_check", app_config="", timeout=0, extra="", broken_dir=""):
    items = NonCustomItems(
        app_binary="ruff",
        app_config=app_config,
        additional_minimization_command=extra,
        tool_type=tool_type,
        search_items=list(BROKEN_ITEMS_TO_FIND),
        ignored_items=list(BROKEN_ITEMS_TO_IGNORE),
        stability_mode=StabilityMode.NONE,
    )
    return RuffProgram(Setting(timeout=timeout, broken_files_dir=broken_dir, non_custom_items=items))


@pytest.fixture(autouse=True)
def reset_asan():
    yield
    set_asan_envs(False)


def test_filter_report_output():
    output = "a.py:1:2: E1 x\nwarning: `foo`\npanic\npanic\n\nline2\n---\nafter"
    assert filter_report_output(output) == "panic\nline2"


def test_filter_report_output_drops_found_lines():
    assert filter_report_output("Found 3 errors.\nIgnoring `x`\nkeep") == "keep"


def test_parse_ruff_failed_files():
    output = "error: Failed to parse /tmp/x.py:1:2: bad\nerror: Failed to parse /a b/x.py:1\nother"
    assert parse_ruff_failed_files(output) == ["/tmp/x.py"]


def test_basic_run_command_without_and_with_timeout():
    assert make_program().basic_run_command().render() == "ruff "
    command = make_program(timeout=5).basic_run_command()
    assert command.program == "timeout"
    assert command.args == ["-v", "5", "ruff"]


def test_lint_check_fix_isolated_and_config():
    args = make_program("lint_check_fix").get_full_command("f.py").args
    assert args[:2] == ["check", "f.py"]
    assert "--fix" in args and "--unsafe-fixes" in args
    assert args[-1] == "--isolated"
    args = make_program("lint_check_fix", app_config="cfg.toml").get_full_command("f.py").args
    assert args[-2:] == ["--config", "cfg.toml"]
    assert "--isolated" not in args


def test_lint_check_has_no_fix():
    args = make_program("lint_check").get_full_command("f.py").args
    assert args == ["check", "f.py", "--select", "ALL", "--preview", "--output-format", "concise", "--no-cache"]


def test_format_and_red_knot_commands():
    assert make_program("format").get_full_command("f.py").args == ["format", "f.py", "--check"]
    assert make_program("red_knot").get_full_command("f.py").args == ["f.py"]


def test_unknown_tool_type_raises():
    with pytest.raises(ValueError):
        make_program("other").get_full_command("f.py")


def test_asan_envs_added():
    set_asan_envs(True)
    command = make_program("format").get_full_command("f.py")
    assert command.env["RUST_BACKTRACE"] == "1"


def test_is_broken_respects_ignored_items():
    program = make_program()
    assert program.is_broken("x LeakSanitizer: y")
    assert not program.is_broken("AddressSanitizer: stack-overflow")
    assert not program.is_broken("all fine")


def test_group_mode_by_tool_type():
    assert make_program("format").files_group_mode() is CheckGroupFileMode.BY_FOLDER
    assert make_program("lint_check_fix").files_group_mode() is CheckGroupFileMode.BY_FOLDER
    assert make_program("red_knot").files_group_mode() is CheckGroupFileMode.NONE


def test_minimize_additional_command():
    assert make_program().minimize_additional_command() is None
    assert make_program(extra="python3 -m compileall {}").minimize_additional_command() == "python3 -m compileall {}"


def test_init_sets_ignored_rules():
    program = make_program()
    program.ignored_rules = "X"
    program.init()
    assert program.ignored_rules == ""


def test_validate_output_saves_two_copies(tmp_path):
    broken = tmp_path / "broken"
    broken.mkdir()
    source = tmp_path / "code.py"
    source.write_text("x = 1")
    program = make_program(broken_dir=str(broken))
    new_name = program.validate_output_and_save_file(str(source), "panic")
    saved = sorted(broken.iterdir())
    assert len(saved) == 2
    assert new_name in [str(p) for p in saved]
    assert all(p.read_text() == "x = 1" for p in saved)


def test_remove_non_parsable_disabled_keeps_files(tmp_path):
    file = tmp_path / "a.py"
    file.write_text("def (")
    make_program().remove_non_parsable_files(str(tmp_path))
    assert [p.name for p in tmp_path.iterdir()] == ["a.py"]