import logging

import pytest

from gitatlas.config import Config
from gitatlas.core.types import Freshness, RemoteState
from gitatlas.mcp.logging_utils import tool_call
from gitatlas.mcp.tools import classify_repository, latest_snapshots, list_repositories, snapshot_history
from gitatlas.store import SnapshotStore


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("GITATLAS_HEAD_POLICY", raising=False)
    return Config.from_env_and_args(home=str(tmp_path / "home"), store_dir=str(tmp_path / "store"))


@pytest.fixture
def populated(config, make_snapshot, history, machine_a, machine_b):
    store = SnapshotStore(config.store_dir)
    ancestry = history("c0", "c1", "c2")
    store.put(make_snapshot(machine_a, {"main": "c1"}, ancestry, path="/home/me/p"))
    store.put(make_snapshot(machine_b, {"main": "c2"}, ancestry, path="/srv/p"))
    store.put(make_snapshot(
        machine_a, {"main": "d0"}, history("d0"), roots=("d0",), path="/home/me/lonely",
        remotes=(RemoteState("origin", "https://gone.example.com/x.git", Freshness.UNREACHABLE, attempts=3),),
    ))
    return store


def test_list_repositories(config, populated):
    result = list_repositories(config)

    assert len(result) == 2
    shared = next(r for r in result if len(r["machines"]) == 2)
    assert shared["paths"] == ["/home/me/p", "/srv/p"]


def test_latest_omits_ancestry(config, populated):
    key = next(r.key for r in populated.repositories() if "c0" in r.roots)

    result = latest_snapshots(key[:8], config)

    assert [s["path"] for s in result["snapshots"]] == ["/home/me/p", "/srv/p"]
    assert "ancestry" not in result["snapshots"][0]


def test_history_by_hostname(config, populated, machine_b):
    key = next(r.key for r in populated.repositories() if "c0" in r.roots)

    result = snapshot_history("beta", key, config=config)

    assert result["machine"] == machine_b.label
    assert len(result["snapshots"]) == 1


def test_classify_reports_pairs_and_orphans(config, populated):
    shared = next(r.key for r in populated.repositories() if "c0" in r.roots)
    lonely = next(r.key for r in populated.repositories() if "d0" in r.roots)

    assert classify_repository(shared, config)["distribution"] == {"Behind": 1}
    assert classify_repository(lonely, config)["distribution"] == {"Orphaned": 1}


def test_unknown_repository_raises(config, populated):
    with pytest.raises(KeyError):
        latest_snapshots("zzzz", config)


def test_tool_call_logs_counts(caplog):
    caplog.set_level(logging.INFO, logger="gitatlas.mcp")

    with tool_call("atlas_classify", repository="abc") as call:
        call['total'] = 3
        call['counts'] = {"InSync": 2, "Diverged": 1}

    assert "Tool invoked: atlas_classify" in caplog.text
    assert "atlas_classify: 3 item(s) [Diverged: 1, InSync: 2]" in caplog.text


def test_tool_call_logs_and_reraises_failures(caplog):
    with pytest.raises(KeyError):
        with tool_call("atlas_latest", repository="zzzz"):
            raise KeyError("Unknown repository: zzzz")

    assert "atlas_latest failed" in caplog.text
