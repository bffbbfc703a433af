from __future__ import annotations

import time

from git_tally.analysis_aggregate import fold
from git_tally.analysis_modes import Mode
from git_tally.analysis_tree import DirectoryNode, build_tree
from git_tally.models import CommitRecord, FileDiff, Stats


def _st(commits: int, first: int, last: int, path: str, lines: int = 0) -> Stats:
    return Stats(
        commits=commits,
        lines_added=lines,
        paths=frozenset({path}),
        first_commit_time=first,
        last_commit_time=last,
    )


def _leaves(node: DirectoryNode) -> list[DirectoryNode]:
    if not node.children:
        return [node]
    out: list[DirectoryNode] = []
    for child in node.children.values():
        out.extend(_leaves(child))
    return out


def _find(root: DirectoryNode, path: str) -> DirectoryNode | None:
    node: DirectoryNode | None = root
    for part in path.split("/"):
        node = node.children.get(part) if node is not None else None
    return node


def _all_nodes(node: DirectoryNode) -> list[DirectoryNode]:
    out = [node]
    for child in node.children.values():
        out.extend(_all_nodes(child))
    return out


def test_rollup_invariant_holds_for_every_directory() -> None:
    records = [
        CommitRecord("1" * 40, "A", "a@x", 100, diffs=(FileDiff("src/a.py", 1, 0), FileDiff("src/pkg/b.py", 2, 0))),
        CommitRecord("2" * 40, "B", "b@x", 300, diffs=(FileDiff("src/pkg/b.py", 1, 1), FileDiff("README.md", 4, 0))),
        CommitRecord("3" * 40, "A", "a@x", 200, diffs=(FileDiff("src/pkg/deep/c.py", 7, 3),)),
    ]
    root = build_tree(fold(records, None).paths)

    for node in _all_nodes(root):
        if not node.children:
            continue
        leaves = _leaves(node)
        assert node.stats.commits == sum(leaf.stats.commits for leaf in leaves)
        assert node.stats.lines == sum(leaf.stats.lines for leaf in leaves)
        assert node.stats.file_count == len(leaves)
        assert node.stats.first_commit_time == min(leaf.stats.first_commit_time for leaf in leaves)
        assert node.stats.last_commit_time == max(leaf.stats.last_commit_time for leaf in leaves)

    src = _find(root, "src")
    assert src is not None
    assert src.stats.commits == 4
    assert (src.stats.first_commit_time, src.stats.last_commit_time) == (100, 300)
    assert _find(root, "src/pkg/deep/c.py") is not None
    assert _find(root, "src/nope") is None


def test_pruned_tree_only_has_active_paths() -> None:
    root = build_tree({"src/a.py": _st(1, 10, 10, "src/a.py")}, show_all=False, tree_paths=["src/b.py", "docs/x.md"])
    assert set(root.children) == {"src"}
    assert set(root.children["src"].children) == {"a.py"}


def test_show_all_keeps_inactive_files_with_zero_stats() -> None:
    root = build_tree(
        {"src/a.py": _st(2, 10, 20, "src/a.py")},
        show_all=True,
        tree_paths=["src/a.py", "src/b.py", "docs/x.md"],
    )
    assert set(root.children) == {"src", "docs"}
    b = _find(root, "src/b.py")
    assert b is not None and b.is_file
    assert b.stats == Stats()
    docs = _find(root, "docs")
    assert docs is not None
    assert docs.stats.commits == 0
    assert docs.stats.first_commit_time is None
    assert root.children["src"].stats.commits == 2
    assert root.children["src"].stats.file_count == 1


def test_ranked_children_by_mode_with_name_tiebreak() -> None:
    root = build_tree(
        {
            "b.txt": _st(2, 10, 50, "b.txt", lines=1),
            "a.txt": _st(2, 20, 40, "a.txt", lines=9),
            "c.txt": _st(1, 5, 60, "c.txt", lines=3),
        }
    )
    assert [n.name for n in root.ranked_children(Mode.COMMITS)] == ["a.txt", "b.txt", "c.txt"]
    assert [n.name for n in root.ranked_children(Mode.LINES)] == ["a.txt", "c.txt", "b.txt"]
    assert [n.name for n in root.ranked_children(Mode.LAST_MODIFIED)] == ["c.txt", "b.txt", "a.txt"]
    assert [n.name for n in root.ranked_children(Mode.FIRST_MODIFIED)] == ["c.txt", "b.txt", "a.txt"]
    assert [n.name for n in root.ranked_children(Mode.FILES)] == ["a.txt", "b.txt", "c.txt"]


def test_walk_respects_depth_and_ranking() -> None:
    root = build_tree(
        {
            "src/pkg/a.py": _st(3, 1, 1, "src/pkg/a.py"),
            "src/b.py": _st(1, 1, 1, "src/b.py"),
            "top.txt": _st(1, 1, 1, "top.txt"),
        }
    )
    full = [(d, n.path) for d, n in root.walk(Mode.COMMITS)]
    assert full == [(0, "src"), (1, "src/pkg"), (2, "src/pkg/a.py"), (1, "src/b.py"), (0, "top.txt")]

    shallow = [(d, n.path) for d, n in root.walk(Mode.COMMITS, max_depth=0)]
    assert shallow == [(0, "src"), (0, "top.txt")]
    src = _find(root, "src")
    assert src is not None and src.label == "src/"


def test_renamed_file_keeps_its_history_and_deleted_file_is_pruned() -> None:
    records = [
        CommitRecord("1" * 40, "A", "a@x", 100, diffs=(FileDiff("old/a.py", 5, 0), FileDiff("tmp.txt", 2, 0))),
        CommitRecord("2" * 40, "B", "b@x", 200, diffs=(FileDiff("new/a.py", 1, 1, old_path="old/a.py"),)),
        CommitRecord("3" * 40, "A", "a@x", 300, diffs=(FileDiff("tmp.txt", 0, 2, deleted=True),)),
    ]
    root = build_tree(fold(records, None).paths)
    assert set(root.children) == {"new"}
    moved = _find(root, "new/a.py")
    assert moved is not None
    assert moved.stats.commits == 2
    assert (moved.stats.lines_added, moved.stats.lines_removed) == (6, 1)
    assert moved.stats.paths == frozenset({"new/a.py"})
    assert (moved.stats.first_commit_time, moved.stats.last_commit_time) == (100, 200)


def test_fold_and_rollup_scale_linearly_with_history() -> None:
    n = 50_000
    records = [
        CommitRecord(f"{i:040x}", "Solo", "solo@x", 1_000 + i, diffs=(FileDiff(f"flat/f{i}.txt", 1, 0),))
        for i in range(n)
    ]
    start = time.perf_counter()
    agg = fold(records, None)
    root = build_tree(agg.paths)
    elapsed = time.perf_counter() - start

    assert agg.contributors[next(iter(agg.contributors))].file_count == n
    assert root.children["flat"].stats.file_count == n
    # Quadratic path-set copying takes minutes at this size.
    assert elapsed < 15
