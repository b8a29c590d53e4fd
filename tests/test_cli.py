import pytest

from gitatlas.__main__ import create_parser, main


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    # setup_logging writes into ./logs
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GITATLAS_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("GITATLAS_STORE", raising=False)
    monkeypatch.delenv("GITATLAS_HEAD_POLICY", raising=False)


def test_list_policies(capsys):
    assert main(["--list-policies"]) == 0

    out = capsys.readouterr().out
    assert "canonical:" in out
    assert "recent:" in out


def test_missing_operation_prints_help(capsys):
    assert main([]) == 1


def test_find_prints_repositories(tmp_path, capsys):
    (tmp_path / "src" / "p" / ".git").mkdir(parents=True)

    assert main(["find", str(tmp_path / "src")]) == 0

    assert capsys.readouterr().out.strip() == str(tmp_path / "src" / "p")


def _key_line(out):
    return next(line for line in out.splitlines() if line.startswith("Key: "))


def test_machine_shows_stable_key(capsys):
    assert main(["machine"]) == 0
    first = _key_line(capsys.readouterr().out)
    assert main(["machine"]) == 0

    assert _key_line(capsys.readouterr().out) == first


def test_status_on_empty_store(capsys):
    assert main(["status"]) == 0

    assert "CLASSIFICATION DISTRIBUTION" in capsys.readouterr().out


def test_unknown_repository_fails():
    assert main(["history", "deadbeef"]) == 1


def test_invalid_policy_is_a_configuration_error():
    assert main(["status", "--policy", "oldest"]) == 1


def test_scan_arguments():
    args = create_parser().parse_args(
        ["scan", "/a", "/b", "--incremental", "--no-fetch", "--ignore", "/a/vendor", "--workers", "2"]
    )

    assert args.paths == ["/a", "/b"]
    assert args.incremental and args.no_fetch
    assert args.ignore == ["/a/vendor"]
    assert args.workers == 2
