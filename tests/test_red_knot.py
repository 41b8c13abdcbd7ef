import subprocess
from unittest import mock

import pytest

from fuzzharness import red_knot


def _fake_run(red_knot_output: bytes, other_output: bytes = b""):
    calls = []

    def run(args, *rest, **kwargs):
        calls.append(list(args))
        if args[0] == "red_knot":
            return subprocess.CompletedProcess(args, 0, stdout=red_knot_output, stderr=b"")
        return subprocess.CompletedProcess(args, 0, stdout=other_output, stderr=b"")

    return run, calls


def test_contains_data():
    assert red_knot.contains_data("abc def", ["xyz", "def"]) is True
    assert red_knot.contains_data("abc def", ["xyz"]) is False
    assert red_knot.contains_data("abc", []) is False


def test_contains_broken_data():
    assert red_knot.contains_broken_data("note: run with RUST_BACKTRACE=1") is True
    assert red_knot.contains_broken_data("all fine") is False
    assert red_knot.contains_broken_data("RUST_BACKTRACE Box<dyn Any>") is False


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("x is always 'load' but got: 'Invalid' y", "invalid"),
        ("assertion `left == right` failed", "assertion_left_right"),
        ("no entry found for key", "no_entry"),
        ("Expected the symbol table to create a symbol for every Name node", "expected_symbol"),
        ("previous.is_none", "previous"),
        ("something else", "other"),
    ],
)
def test_classify_output(output, expected):
    assert red_knot.classify_output(output) == expected


def test_classify_output_order():
    assert red_knot.classify_output("no entry found for key previous.is_none") == "no_entry"


def test_split_into_chunks_small():
    files = [f"f{i}.py" for i in range(10)]
    chunks = red_knot.split_into_chunks(files, 4)
    assert [len(chunk) for chunk in chunks] == [3, 3, 3, 1]
    assert [item for chunk in chunks for item in chunk] == files


def test_split_into_chunks_large():
    files = [f"f{i}.py" for i in range(2500)]
    chunks = red_knot.split_into_chunks(files, 1)
    assert all(len(chunk) <= red_knot.MAX_FILES_IN_GROUP for chunk in chunks)
    assert len(chunks[0]) == red_knot.MAX_FILES_IN_GROUP
    assert [item for chunk in chunks for item in chunk] == files


def test_split_into_chunks_empty():
    assert red_knot.split_into_chunks([], 8) == []


def test_split_into_chunks_invalid_threads():
    with pytest.raises(ValueError):
        red_knot.split_into_chunks(["a.py"], 0)


def test_run_red_knot_arguments():
    run, calls = _fake_run(b"hello")
    with mock.patch("fuzzharness.red_knot.subprocess.run", side_effect=run):
        output = red_knot.run_red_knot("some_folder")
    assert "hello" in output
    assert calls == [["red_knot", "--current-directory", "some_folder"]]


def test_run_minimizer_arguments(capsys):
    run, calls = _fake_run(b"", b"minimizer finished")
    with mock.patch("fuzzharness.red_knot.subprocess.run", side_effect=run):
        red_knot.run_minimizer("in.py", "out.py", "folder")
    assert "minimizer finished" in capsys.readouterr().out
    args = calls[0]
    assert args[0] == "minimizer"
    assert args[args.index("--command") + 1] == "red_knot --current-directory folder"
    assert args[args.index("--broken-info") + 1] == "RUST_BACKTRACE"
    assert args[args.index("--ignored-info") + 1] == "Box<dyn Any>"
    assert args[-2:] == ["-r", "-v"]


def test_create_broken_files_missing_input(tmp_path):
    with pytest.raises(FileNotFoundError):
        red_knot.create_broken_files(str(tmp_path / "missing"), str(tmp_path))


def test_create_broken_files_arguments(tmp_path):
    (tmp_path / "in").mkdir()
    (tmp_path / "out").mkdir()
    run, calls = _fake_run(b"")
    with mock.patch("fuzzharness.red_knot.subprocess.run", side_effect=run):
        red_knot.create_broken_files(str(tmp_path / "in"), str(tmp_path / "out"))
    args = calls[0]
    assert args[0] == "create_broken_files"
    assert args[args.index("--input-path") + 1] == str((tmp_path / "in").resolve())
    assert args[args.index("--output-path") + 1] == str((tmp_path / "out").resolve())
    assert "-m" in args


def test_check_with_red_knot_saves_broken(tmp_path):
    source = tmp_path / "src"
    source.mkdir()
    file = source / "case.py"
    file.write_text("x = 1\n")
    temp_dir = tmp_path / "temp"
    broken_dir = tmp_path / "broken"
    broken_dir.mkdir()

    run, _ = _fake_run(b"no entry found for key\nRUST_BACKTRACE")
    with mock.patch("fuzzharness.red_knot.subprocess.run", side_effect=run):
        red_knot.check_with_red_knot([str(file)], str(temp_dir), str(broken_dir))

    saved = sorted(path.name for path in broken_dir.iterdir())
    assert len(saved) == 2
    assert all(name.startswith("no_entry_") for name in saved)
    py_files = [path for path in broken_dir.iterdir() if path.suffix == ".py"]
    assert py_files[0].read_text() == "x = 1\n"
    assert list(temp_dir.iterdir()) == []


def test_check_with_red_knot_ignores_clean(tmp_path):
    file = tmp_path / "case.py"
    file.write_text("y = 2\n")
    broken_dir = tmp_path / "broken"
    broken_dir.mkdir()

    run, calls = _fake_run(b"all good")
    with mock.patch("fuzzharness.red_knot.subprocess.run", side_effect=run):
        red_knot.check_with_red_knot([str(file)], str(tmp_path / "temp"), str(broken_dir))

    assert list(broken_dir.iterdir()) == []
    assert [call[0] for call in calls] == ["red_knot"]


def test_main_without_input_folder(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        red_knot.main(["100"])


def test_main_with_no_generated_files(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / red_knot.INPUT_FILES_DIR).mkdir()
    run, calls = _fake_run(b"")
    with mock.patch("fuzzharness.red_knot.subprocess.run", side_effect=run):
        result = red_knot.main(["100"])
    assert result == 0
    assert (tmp_path / red_knot.BROKEN_FILES_DIR).is_dir()
    assert [call[0] for call in calls] == ["create_broken_files"]


def test_main_invalid_time():
    with pytest.raises(ValueError):
        red_knot.main(["not-a-number"])