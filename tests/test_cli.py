"""Tests for the command-line interface."""

import io

import pytest

from lfswalk import cli


def test_parse_count_defaults():
    args = cli.parse_args(["count", "/lustre/project"])

    assert args.operation == "count"
    assert args.path == "/lustre/project"
    assert args.file_workers == 4
    assert args.dir_workers == 2
    assert args.lister == "scandir"
    assert args.sizes is False


def test_aliases_map_to_operations():
    assert cli.parse_args(["rm", "/lustre/old"]).operation == "delete"
    copy = cli.parse_args(["cp", "/lustre/a", "/lustre/b"])
    assert copy.operation == "copy"
    assert copy.destination == "/lustre/b"


def test_find_empty_dirs_options():
    args = cli.parse_args(["find-empty-dirs", "/lustre/x", "--threshold", "3", "--top", "5"])

    assert args.threshold == 3
    assert args.top == 5


def test_environment_defaults(monkeypatch):
    monkeypatch.setenv("LFSWALK_FILE_WORKERS", "32")
    monkeypatch.setenv("LFSWALK_DIR_WORKERS", "8")
    monkeypatch.setenv("LFSWALK_LISTER", "lfs")

    args = cli.parse_args(["count", "/lustre/x"])

    assert args.file_workers == 32
    assert args.dir_workers == 8
    assert args.lister == "lfs"


def test_operation_is_required():
    with pytest.raises(SystemExit):
        cli.parse_args([])


@pytest.mark.parametrize(
    "answers, expected",
    [
        ("yes\n", True),
        ("no\n", False),
        ("maybe\nYES\n", True),
        ("y\n\nNo\n", False),
        ("", False),
    ],
)
def test_ask_for_confirmation(answers, expected, capsys):
    assert cli.ask_for_confirmation("Delete?", stream=io.StringIO(answers)) is expected
    assert "Delete? [yes/no]: " in capsys.readouterr().out


def test_main_count(temp_dir):
    (temp_dir / "f.txt").write_text("x")

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["count", str(temp_dir)])

    assert exc_info.value.code == 0


def test_main_missing_path_is_fatal(temp_dir, capsys):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["count", str(temp_dir / "missing")])

    assert exc_info.value.code == 1
    assert "Fatal error" in capsys.readouterr().err


def test_main_delete_declined(temp_dir, monkeypatch):
    target = temp_dir / "keep"
    target.mkdir()
    monkeypatch.setattr("sys.stdin", io.StringIO("no\n"))

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["delete", str(target)])

    assert exc_info.value.code == 1
    assert target.exists()


def test_main_delete_confirmed(temp_dir, monkeypatch):
    target = temp_dir / "doomed"
    (target / "sub").mkdir(parents=True)
    (target / "sub" / "f.txt").write_text("x")
    monkeypatch.setattr("sys.stdin", io.StringIO("yes\n"))

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["delete", str(target)])

    assert exc_info.value.code == 0
    assert not target.exists()


def test_main_delete_yes_flag_skips_prompt(temp_dir, monkeypatch):
    target = temp_dir / "doomed"
    target.mkdir()
    monkeypatch.setattr("sys.stdin", io.StringIO(""))

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["rm", "--yes", str(target)])

    assert exc_info.value.code == 0
    assert not target.exists()


def test_main_copy(temp_dir):
    src = temp_dir / "src"
    src.mkdir()
    (src / "f.txt").write_text("copied")

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["copy", "--no-stripe", str(src), str(temp_dir / "dst")])

    assert exc_info.value.code == 0
    assert (temp_dir / "dst" / "f.txt").read_text() == "copied"


def test_main_find_empty_dirs_prints_ranking(temp_dir, capsys):
    (temp_dir / "empty").mkdir()
    (temp_dir / "full").mkdir()
    (temp_dir / "full" / "f.txt").write_text("x")

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["find-empty-dirs", str(temp_dir)])

    assert exc_info.value.code == 0
    out = capsys.readouterr().out
    assert f"0\t{temp_dir / 'empty'}" in out
    assert f"\t{temp_dir / 'full'}\n" not in out


def test_main_non_destructive_operation_never_prompts(temp_dir, monkeypatch, capsys):
    (temp_dir / "f.txt").write_text("x")
    monkeypatch.setattr("sys.stdin", io.StringIO(""))

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["count", str(temp_dir)])

    assert exc_info.value.code == 0
    assert "[yes/no]" not in capsys.readouterr().out


def test_main_confirmation_follows_destructive_flag(temp_dir, monkeypatch):
    from lfswalk.operations import CountOperation

    monkeypatch.setattr(CountOperation, "destructive", True)
    monkeypatch.setattr("sys.stdin", io.StringIO("no\n"))

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["count", str(temp_dir)])

    assert exc_info.value.code == 1
