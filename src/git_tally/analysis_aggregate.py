from __future__ import annotations

import dataclasses
import os
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

import structlog

from .analysis_filters import Filters, matches, restrict_paths
from .identity import MailmapRuleSet
from .models import Aggregate, CommitRecord, Identity, Stats

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

COMMITS_PER_WORKER = 10_000


def default_worker_count(n_commits: int, cpu_count: int | None = None) -> int:
    n_cpu = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    max_workers = max(1, n_cpu * 2 - 1)
    return max(1, min(max_workers, n_commits // COMMITS_PER_WORKER + 1))


def split_chunks(items: Sequence[T], n: int) -> list[Sequence[T]]:
    """Split into at most `n` contiguous, near-equal, non-empty chunks; order is kept."""
    n = max(1, min(int(n), len(items)))
    if not items:
        return []
    size, extra = divmod(len(items), n)
    chunks: list[Sequence[T]] = []
    start = 0
    for i in range(n):
        end = start + size + (1 if i < extra else 0)
        chunks.append(items[start:end])
        start = end
    return chunks


def run_chunked(fn: Callable[[Sequence[T]], R], chunks: list[Sequence[T]], worker_count: int) -> list[R]:
    """Run `fn` over each chunk; results come back in chunk order."""
    if worker_count <= 1 or len(chunks) <= 1:
        return [fn(chunk) for chunk in chunks]
    with ThreadPoolExecutor(max_workers=min(worker_count, len(chunks))) as ex:
        futs = [ex.submit(fn, chunk) for chunk in chunks]
        return [fut.result() for fut in futs]


@dataclasses.dataclass
class _Tally:
    commits: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    paths: set[str] = dataclasses.field(default_factory=set)
    first_commit_time: int | None = None
    last_commit_time: int | None = None

    @classmethod
    def thaw(cls, st: Stats) -> _Tally:
        return cls(
            commits=st.commits,
            lines_added=st.lines_added,
            lines_removed=st.lines_removed,
            paths=set(st.paths),
            first_commit_time=st.first_commit_time,
            last_commit_time=st.last_commit_time,
        )

    def touch(self, ts: int) -> None:
        if self.first_commit_time is None or ts < self.first_commit_time:
            self.first_commit_time = ts
        if self.last_commit_time is None or ts > self.last_commit_time:
            self.last_commit_time = ts

    def absorb(self, st: Stats) -> None:
        self.commits += st.commits
        self.lines_added += st.lines_added
        self.lines_removed += st.lines_removed
        self.paths.update(st.paths)
        for ts in (st.first_commit_time, st.last_commit_time):
            if ts is not None:
                self.touch(ts)

    def freeze(self) -> Stats:
        return Stats(
            commits=self.commits,
            lines_added=self.lines_added,
            lines_removed=self.lines_removed,
            paths=frozenset(self.paths),
            first_commit_time=self.first_commit_time,
            last_commit_time=self.last_commit_time,
        )


class _Accumulator:
    """
    Mutable counterpart of an Aggregate.

    Path sets stay mutable until `freeze`, so adding a commit costs time
    proportional to the files it touches, not to the files seen so far.
    """

    def __init__(self) -> None:
        self.contributors: dict[Identity, _Tally] = {}
        self.paths: dict[str, _Tally] = {}
        self.moves: list[tuple[str, str | None]] = []

    @classmethod
    def thaw(cls, agg: Aggregate) -> _Accumulator:
        acc = cls()
        acc.contributors = {ident: _Tally.thaw(st) for ident, st in agg.contributors.items()}
        acc.paths = {path: _Tally.thaw(st) for path, st in agg.paths.items()}
        acc.moves = list(agg.moves)
        return acc

    def move(self, old: str, new: str | None) -> None:
        """Rename `old` to `new`, or drop it when `new` is None."""
        moved = self.paths.pop(old, None)
        if new is None:
            return
        if moved is not None:
            moved.paths = {new}
            cur = self.paths.get(new)
            if cur is None:
                self.paths[new] = moved
            else:
                cur.absorb(moved.freeze())
        # A rename counts as the same file for every contributor who touched it.
        for tally in self.contributors.values():
            if old in tally.paths:
                tally.paths.discard(old)
                tally.paths.add(new)

    def add_commit(self, identity: Identity, record: CommitRecord) -> None:
        paths = record.paths
        ts = record.timestamp
        tally = self.contributors.get(identity)
        if tally is None:
            tally = self.contributors[identity] = _Tally()
        tally.commits += 1
        tally.paths.update(paths)
        tally.touch(ts)
        for path, (added, removed) in paths.items():
            tally.lines_added += added
            tally.lines_removed += removed
            path_tally = self.paths.get(path)
            if path_tally is None:
                path_tally = self.paths[path] = _Tally(paths={path})
            path_tally.commits += 1
            path_tally.lines_added += added
            path_tally.lines_removed += removed
            path_tally.touch(ts)

    def add_record(self, identity: Identity, record: CommitRecord, counted: bool) -> None:
        # Renames apply before the commit's own changes, deletions after.
        for d in record.diffs:
            if d.old_path is not None and d.old_path != d.path:
                self.move(d.old_path, d.path)
                self.moves.append((d.old_path, d.path))
        if counted:
            self.add_commit(identity, record)
        for d in record.diffs:
            if d.deleted:
                self.move(d.path, None)
                self.moves.append((d.path, None))

    def absorb(self, agg: Aggregate) -> None:
        """Merge a partial result that covers later history than this one."""
        for old, new in agg.moves:
            self.move(old, new)
        self.moves.extend(agg.moves)
        for ident, st in agg.contributors.items():
            cur = self.contributors.get(ident)
            if cur is None:
                self.contributors[ident] = _Tally.thaw(st)
            else:
                cur.absorb(st)
        for path, st in agg.paths.items():
            cur = self.paths.get(path)
            if cur is None:
                self.paths[path] = _Tally.thaw(st)
            else:
                cur.absorb(st)

    def freeze(self) -> Aggregate:
        return Aggregate(
            contributors={ident: t.freeze() for ident, t in self.contributors.items()},
            paths={path: t.freeze() for path, t in self.paths.items()},
            moves=list(self.moves),
        )


def merge(a: Aggregate, b: Aggregate) -> Aggregate:
    """
    Combine two partial results, `a` covering earlier history than `b`.

    Renames and deletions recorded in `b` are replayed over `a` first. The
    merge is associative, and commutative whenever `b` records no moves.
    """
    acc = _Accumulator.thaw(a)
    acc.absorb(b)
    return acc.freeze()


def merge_all(parts: Iterable[Aggregate]) -> Aggregate:
    acc = _Accumulator()
    for part in parts:
        acc.absorb(part)
    return acc.freeze()


def resolve_identity(record: CommitRecord, resolver: MailmapRuleSet | None) -> Identity:
    if resolver is None:
        return Identity(name=record.name, email=record.email)
    return resolver.resolve(record.name, record.email)


def fold(records: Iterable[CommitRecord], resolver: MailmapRuleSet | None, filters: Filters | None = None) -> Aggregate:
    """
    Accumulate commits in history order.

    Renames and deletions are applied for every record, counted or not, so
    the path map follows the files that exist at the end of the range.
    """
    filters = filters if filters is not None else Filters(include_merges=True)
    acc = _Accumulator()
    for record in records:
        identity = resolve_identity(record, resolver)
        counted = matches(record, filters, identity)
        acc.add_record(identity, restrict_paths(record, filters.pathspecs), counted)
    return acc.freeze()


def aggregate(
    records: Iterable[CommitRecord],
    resolver: MailmapRuleSet | None,
    filters: Filters | None = None,
    worker_count: int = 1,
) -> Aggregate:
    """
    Fold commits into per-identity and per-path statistics.

    The records are split into `worker_count` contiguous chunks, each folded
    into a private accumulator on its own thread, and the partial results are
    merged in chunk order. Renames and deletions from later chunks are
    replayed over earlier ones, so the result does not depend on
    `worker_count`.
    """
    items = records if isinstance(records, Sequence) else list(records)
    start = time.monotonic()
    chunks = split_chunks(items, worker_count)
    parts = run_chunked(lambda chunk: fold(chunk, resolver, filters), chunks, worker_count)
    out = merge_all(parts)
    logger.debug(
        "aggregated commits",
        records=len(items),
        workers=len(chunks),
        contributors=len(out.contributors),
        paths=len(out.paths),
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    return out
