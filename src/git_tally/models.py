from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class FileDiff:
    path: str
    added: int = 0
    removed: int = 0
    old_path: str | None = None  # rename source
    deleted: bool = False


@dataclasses.dataclass(frozen=True)
class CommitRecord:
    hash: str
    name: str
    email: str
    timestamp: int  # unix seconds, author date
    is_merge: bool = False
    diffs: tuple[FileDiff, ...] = ()

    @property
    def short_hash(self) -> str:
        return self.hash[:7]

    @property
    def paths(self) -> dict[str, tuple[int, int]]:
        out: dict[str, tuple[int, int]] = {}
        for d in self.diffs:
            added, removed = out.get(d.path, (0, 0))
            out[d.path] = (added + d.added, removed + d.removed)
        return out

    @property
    def lines_added(self) -> int:
        return sum(d.added for d in self.diffs)

    @property
    def lines_removed(self) -> int:
        return sum(d.removed for d in self.diffs)


@dataclasses.dataclass(frozen=True, order=True)
class Identity:
    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


def _min_time(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _max_time(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


@dataclasses.dataclass(frozen=True)
class Stats:
    """
    Counters for one contributor or one path.

    `paths` holds the distinct files behind the counters, so merging two partial
    results never double counts a file.
    """

    commits: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    paths: frozenset[str] = frozenset()
    first_commit_time: int | None = None
    last_commit_time: int | None = None

    @property
    def lines(self) -> int:
        return self.lines_added + self.lines_removed

    @property
    def file_count(self) -> int:
        return len(self.paths)

    def merge(self, other: Stats) -> Stats:
        return Stats(
            commits=self.commits + other.commits,
            lines_added=self.lines_added + other.lines_added,
            lines_removed=self.lines_removed + other.lines_removed,
            paths=self.paths | other.paths,
            first_commit_time=_min_time(self.first_commit_time, other.first_commit_time),
            last_commit_time=_max_time(self.last_commit_time, other.last_commit_time),
        )


ContributorStats = Stats
PathStats = Stats


@dataclasses.dataclass
class Aggregate:
    contributors: dict[Identity, ContributorStats] = dataclasses.field(default_factory=dict)
    paths: dict[str, PathStats] = dataclasses.field(default_factory=dict)
    # Renames (old, new) and deletions (path, None) in history order.
    moves: list[tuple[str, str | None]] = dataclasses.field(default_factory=list, compare=False, repr=False)

    @property
    def commit_count(self) -> int:
        return sum(st.commits for st in self.contributors.values())


@dataclasses.dataclass(frozen=True)
class History:
    """Identity-resolved commits for one repository state and mailmap state."""

    repo_state: str
    mailmap: str
    records: tuple[CommitRecord, ...] = ()
