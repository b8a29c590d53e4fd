from gitatlas.graph import SnapshotGraph


def test_is_ancestor_on_complete_history(make_snapshot, history, machine_a):
    graph = SnapshotGraph([make_snapshot(machine_a, {"main": "c3"}, history("c0", "c1", "c2", "c3"))])

    assert graph.is_ancestor("c1", "c3") is True
    assert graph.is_ancestor("c3", "c1") is False
    assert graph.is_ancestor("c2", "c2") is True


def test_unknown_parent_makes_walk_incomplete(make_snapshot, machine_a):
    graph = SnapshotGraph([make_snapshot(machine_a, {"main": "c3"}, {"c3": ("c2",), "c2": ("c1",)})])

    reachable, complete = graph.walk("c3")

    assert reachable == {"c3", "c2", "c1"}
    assert complete is False
    assert graph.is_ancestor("x", "c3") is None


def test_truncation_is_resolved_by_a_fuller_snapshot(make_snapshot, history, machine_a, machine_b):
    shallow = make_snapshot(machine_a, {"main": "c2"}, {"c2": ("c1",), "c1": ()}, truncated={"c1"})
    full = make_snapshot(machine_b, {"main": "c2"}, history("c0", "c1", "c2"))

    graph = SnapshotGraph([shallow, full])

    assert not graph.is_truncated("c1")
    assert graph.parents("c1") == ("c0",)
    assert graph.is_ancestor("c0", "c2") is True


def test_merge_bases_and_unique_counts(make_snapshot, machine_a):
    ancestry = {"c0": (), "c1": ("c0",), "a1": ("c1",), "a2": ("a1",), "b1": ("c1",)}
    graph = SnapshotGraph([make_snapshot(machine_a, {"main": "a2"}, ancestry)])

    assert graph.merge_bases("a2", "b1") == ["c1"]
    assert graph.unique_count("a2", "b1") == 2
    assert graph.unique_count("b1", "a2") == 1


def test_disconnected_commits_have_no_merge_base(make_snapshot, machine_a):
    graph = SnapshotGraph([make_snapshot(machine_a, {"main": "a1"}, {"a0": (), "a1": ("a0",), "b0": ()})])

    assert graph.merge_bases("a1", "b0") == []


def _window(start, end, extra):
    """Ancestry of c<start>..c<end> with c<start> cut off, plus extra commits."""
    ancestry = {f"c{i}": (f"c{i - 1}",) for i in range(start, end + 1)}
    ancestry.update(extra)
    return ancestry


def test_frontier_lists_commits_with_missing_parents(make_snapshot, machine_a):
    graph = SnapshotGraph([make_snapshot(machine_a, {"main": "x"}, _window(21, 29, {"x": ("c29",)}), truncated={"c21"})])

    assert graph.frontier("x") == {"c21"}
    assert graph.frontier("c25") == {"c21"}


def test_gaps_below_common_ancestor(make_snapshot, machine_a, machine_b):
    a = make_snapshot(machine_a, {"main": "x"}, _window(21, 29, {"x": ("c29",)}), truncated={"c21"})
    b = make_snapshot(machine_b, {"main": "y"}, _window(22, 29, {"y": ("c29",)}), truncated={"c22"})
    graph = SnapshotGraph([a, b])

    assert graph.is_ancestor("y", "x") is None
    assert graph.merge_bases("x", "y") == ["c29"]
    assert graph.gaps_below(["c29"], "x", "y")
    assert not graph.gaps_below(["c29"], "x", "unknown")
    assert not graph.gaps_below([], "x", "y")
