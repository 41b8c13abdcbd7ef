import sys
from types import SimpleNamespace

import pytest

from fuzzharness.common import CommandLine, set_timeout
from fuzzharness.different_output import check_files_stability, runs_differ
from fuzzharness.program import ProgramConfig
from fuzzharness.settings import StabilityMode

RANDOM_SCRIPT = "import random;print(random.random())"
CONSTANT_SCRIPT = "print('same')"
WRITING_SCRIPT = "import random,sys;open(sys.argv[1],'a').write(str(random.random()))"


class ScriptProgram(ProgramConfig):
    def __init__(self, settings, script, mode):
        super().__init__(settings)
        self.script = script
        self.mode = mode

    def broken_items(self):
        return []

    def ignored_items(self):
        return []

    def is_broken(self, content):
        return False

    def stability_mode(self):
        return self.mode

    def basic_run_command(self):
        return CommandLine(sys.executable, ["-c", self.script])

    def broken_file_creator(self):
        raise RuntimeError("not used")


@pytest.fixture(autouse=True)
def long_timeout():
    set_timeout(10**9)


@pytest.fixture
def settings(tmp_path):
    broken = tmp_path / "broken"
    broken.mkdir()
    return SimpleNamespace(
        name="tool",
        broken_files_dir=str(broken),
        error_when_found_signal=False,
        allowed_error_statuses=[],
        ignore_timeout_errors=False,
        timeout=0,
        debug_print_results=False,
        stability_runs=3,
    )


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "sample.py"
    path.write_text("x = 1\n")
    return path


def test_runs_differ():
    assert runs_differ(["a", "a", "b"]) is True
    assert runs_differ(["a", "a", "a"]) is False
    assert runs_differ([]) is False
    assert runs_differ([b"x"]) is False


def test_unstable_output_is_saved(settings, sample, tmp_path):
    obj = ScriptProgram(settings, RANDOM_SCRIPT, StabilityMode.CONSOLE_OUTPUT)
    assert check_files_stability([str(sample)], settings, obj) == 1
    saved = list((tmp_path / "broken").iterdir())
    assert len(saved) == 1
    assert saved[0].read_text() == "x = 1\n"
    assert sample.read_text() == "x = 1\n"


def test_stable_output_is_not_saved(settings, sample, tmp_path):
    obj = ScriptProgram(settings, CONSTANT_SCRIPT, StabilityMode.OUTPUT_CONTENT)
    assert check_files_stability([str(sample)], settings, obj) == 0
    assert list((tmp_path / "broken").iterdir()) == []


def test_file_is_restored_between_runs(settings, sample):
    obj = ScriptProgram(settings, WRITING_SCRIPT, StabilityMode.FILE_CONTENT)
    assert check_files_stability([str(sample)], settings, obj) == 0
    assert sample.read_text() == "x = 1\n"


def test_no_stability_mode_is_rejected(settings, sample):
    obj = ScriptProgram(settings, CONSTANT_SCRIPT, StabilityMode.NONE)
    with pytest.raises(ValueError):
        check_files_stability([str(sample)], settings, obj)