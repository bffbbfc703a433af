from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Iterator, Mapping

from .analysis_modes import Mode
from .analysis_paths import clean_path, split_path
from .models import PathStats, Stats


@dataclasses.dataclass
class DirectoryNode:
    name: str
    path: str = ""
    stats: Stats = dataclasses.field(default_factory=Stats)
    children: dict[str, DirectoryNode] = dataclasses.field(default_factory=dict)
    is_file: bool = False
    own: Stats = dataclasses.field(default_factory=Stats, repr=False)

    @property
    def label(self) -> str:
        return self.name + "/" if self.children else self.name

    def child(self, name: str) -> DirectoryNode:
        node = self.children.get(name)
        if node is None:
            path = f"{self.path}/{name}" if self.path else name
            node = DirectoryNode(name=name, path=path)
            self.children[name] = node
        return node

    def ranked_children(self, mode: Mode) -> list[DirectoryNode]:
        return sorted(self.children.values(), key=lambda n: (-mode.metric(n.stats), n.name))

    def walk(self, mode: Mode, max_depth: int | None = None) -> Iterator[tuple[int, DirectoryNode]]:
        """
        Yield (depth, node) for the descendants of this node in ranked order.

        Direct children have depth 0; nodes deeper than `max_depth` are skipped.
        """
        stack: list[tuple[int, DirectoryNode]] = [(0, n) for n in reversed(self.ranked_children(mode))]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            if max_depth is not None and depth + 1 > max_depth:
                continue
            stack.extend((depth + 1, n) for n in reversed(node.ranked_children(mode)))


def _rollup(node: DirectoryNode) -> Stats:
    parts = [node.own, *(_rollup(child) for child in node.children.values())]
    firsts = [st.first_commit_time for st in parts if st.first_commit_time is not None]
    lasts = [st.last_commit_time for st in parts if st.last_commit_time is not None]
    node.stats = Stats(
        commits=sum(st.commits for st in parts),
        lines_added=sum(st.lines_added for st in parts),
        lines_removed=sum(st.lines_removed for st in parts),
        paths=frozenset().union(*(st.paths for st in parts)),
        first_commit_time=min(firsts, default=None),
        last_commit_time=max(lasts, default=None),
    )
    return node.stats


def build_tree(
    path_stats: Mapping[str, PathStats],
    show_all: bool = False,
    tree_paths: Iterable[str] = (),
) -> DirectoryNode:
    """
    Roll per-path statistics up into a directory tree.

    Every directory holds the sum of its leaves' counters, the union of their
    files and the min/max of their activity times. With `show_all`, each of
    `tree_paths` is added as a leaf with zero stats unless it already has
    activity.
    """
    root = DirectoryNode(name="")
    for path, st in path_stats.items():
        parts = split_path(path)
        if not parts:
            continue
        node = root
        for part in parts:
            node = node.child(part)
        node.is_file = True
        node.own = node.own.merge(st)

    if show_all:
        for path in tree_paths:
            parts = split_path(clean_path(path))
            if not parts:
                continue
            node = root
            for part in parts:
                node = node.child(part)
            node.is_file = True

    _rollup(root)
    return root
