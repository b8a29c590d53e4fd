import pytest

from gitatlas.core.errors import CorruptRepository, EmptyRepository, NotARepository
from gitatlas.core.types import Freshness, RefKind, RemoteState, RepositoryIdentity
from gitatlas.extractor import TopologyExtractor, ref_digest
from gitatlas.git.base import RefRecord

from conftest import FakeRepo


@pytest.fixture
def repo_dir(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return str(path)


@pytest.fixture
def extractor(fake_git, machine_a, clock):
    return TopologyExtractor(fake_git, machine_a, clock=clock)


def _repo(**overrides):
    fields = dict(
        commits={"c0": (), "c1": ("c0",), "c2": ("c1",), "f1": ("c1",)},
        refs={
            "refs/heads/main": "c2",
            "refs/heads/feature": "f1",
            "refs/remotes/origin/main": "c1",
        },
        remotes={"origin": "git@github.com:me/project.git"},
        description="My project",
    )
    fields.update(overrides)
    return FakeRepo(**fields)


def test_extract_captures_refs_heads_first(fake_git, extractor, repo_dir, machine_a):
    fake_git.add(repo_dir, _repo())

    snapshot = extractor.extract(repo_dir)

    assert snapshot.machine == machine_a
    assert snapshot.repository == RepositoryIdentity.from_roots(["c0"])
    assert [r.name for r in snapshot.refs] == [
        "refs/heads/feature",
        "refs/heads/main",
        "refs/remotes/origin/main",
    ]
    assert [r.kind for r in snapshot.refs] == [RefKind.HEAD, RefKind.HEAD, RefKind.REMOTE]
    assert snapshot.description == "My project"
    assert set(snapshot.ancestry) == {"c0", "c1", "c2", "f1"}
    assert snapshot.truncated == frozenset()


def test_remote_refs_are_stale_without_fetch(fake_git, extractor, repo_dir):
    fake_git.add(repo_dir, _repo())

    snapshot = extractor.extract(repo_dir)

    assert snapshot.remote_refs[0].freshness == Freshness.STALE
    assert snapshot.remote("origin").status == Freshness.STALE
    assert snapshot.heads[0].freshness == Freshness.LOCAL


def test_remote_states_tag_remote_refs(fake_git, extractor, repo_dir):
    fake_git.add(repo_dir, _repo())
    fresh = RemoteState("origin", "git@github.com:me/project.git", Freshness.FRESH, attempts=1)

    snapshot = extractor.extract(repo_dir, {"origin": fresh})

    assert snapshot.remote_refs[0].freshness == Freshness.FRESH
    assert snapshot.remote_refs[0].remote == "origin"
    assert snapshot.remotes == (fresh,)


def test_remote_names_with_slashes(fake_git, extractor, repo_dir):
    fake_git.add(repo_dir, _repo(
        refs={"refs/heads/main": "c2", "refs/remotes/team/a/main": "c1", "refs/remotes/team/main": "c0"},
        remotes={"team": "https://example.com/team.git", "team/a": "https://example.com/a.git"},
    ))

    snapshot = extractor.extract(repo_dir)

    assert {r.name: r.remote for r in snapshot.remote_refs} == {
        "refs/remotes/team/a/main": "team/a",
        "refs/remotes/team/main": "team",
    }


def test_capture_timestamps_increase(fake_git, extractor, repo_dir):
    fake_git.add(repo_dir, _repo())

    first = extractor.extract(repo_dir)
    second = extractor.extract(repo_dir)

    assert second.captured_at > first.captured_at
    assert first.ref_digest == second.ref_digest


def test_shallow_clone_keeps_boundary_as_root(fake_git, extractor, repo_dir):
    fake_git.add(repo_dir, _repo(shallow={"c1"}))

    snapshot = extractor.extract(repo_dir)

    assert snapshot.roots == frozenset({"c1"})
    assert snapshot.truncated == frozenset({"c1"})
    assert snapshot.ancestry["c1"] == ()


def test_history_depth_bounds_ancestry(fake_git, machine_a, repo_dir):
    commits = {"c0": ()}
    for i in range(1, 50):
        commits[f"c{i}"] = (f"c{i - 1}",)
    fake_git.add(repo_dir, FakeRepo(commits=commits, refs={"refs/heads/main": "c49"}))

    snapshot = TopologyExtractor(fake_git, machine_a, history_depth=10).extract(repo_dir)

    assert len(snapshot.ancestry) == 10


def test_repository_without_heads_is_empty(fake_git, extractor, repo_dir):
    fake_git.add(repo_dir, FakeRepo(commits={}, refs={}))

    with pytest.raises(EmptyRepository):
        extractor.extract(repo_dir)


def test_missing_path_is_not_a_repository(extractor, tmp_path):
    with pytest.raises(NotARepository):
        extractor.extract(str(tmp_path / "missing"))


def test_plain_directory_is_not_a_repository(extractor, repo_dir):
    with pytest.raises(NotARepository):
        extractor.extract(repo_dir)


def test_corrupt_repository(fake_git, extractor, repo_dir):
    fake_git.add(repo_dir, _repo(corrupt=True))

    with pytest.raises(CorruptRepository):
        extractor.extract(repo_dir)


def test_ref_digest_ignores_listing_order():
    refs = [RefRecord("refs/heads/main", "c1", 1), RefRecord("refs/heads/dev", "c2", 2)]

    assert ref_digest(refs) == ref_digest(list(reversed(refs)))
    assert ref_digest(refs) != ref_digest(refs[:1])
