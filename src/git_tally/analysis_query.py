from __future__ import annotations

import dataclasses
import time
from collections.abc import Sequence

import structlog

from .analysis_aggregate import aggregate, default_worker_count, run_chunked, split_chunks
from .analysis_cache import CacheKey, CacheStore
from .analysis_filters import Filters, matches, restrict_paths
from .analysis_hist import Bucket, build_buckets
from .analysis_modes import Mode, rank_contributors
from .analysis_repo import CommitSource
from .analysis_tree import DirectoryNode, build_tree
from .identity import MailmapRuleSet
from .models import Aggregate, CommitRecord, ContributorStats, History, Identity

logger = structlog.get_logger(__name__)

TABLE = "table"
TREE = "tree"
LOG = "log"
HIST = "hist"
VIEWS = (TABLE, TREE, LOG, HIST)


@dataclasses.dataclass(frozen=True)
class Query:
    view: str = TABLE
    mode: Mode = Mode.COMMITS
    filters: Filters = dataclasses.field(default_factory=Filters)
    revs: tuple[str, ...] = ()
    show_all: bool = False
    limit: int | None = None
    depth: int | None = None
    worker_count: int | None = None  # None: derived from the number of commits
    use_cache: bool = True


@dataclasses.dataclass(frozen=True)
class TableResult:
    mode: Mode
    rows: list[tuple[Identity, ContributorStats]]
    aggregate: Aggregate
    cache_hit: bool = False


@dataclasses.dataclass(frozen=True)
class TreeResult:
    mode: Mode
    root: DirectoryNode
    depth: int | None = None
    cache_hit: bool = False


@dataclasses.dataclass(frozen=True)
class LogResult:
    records: list[CommitRecord]
    cache_hit: bool = False


@dataclasses.dataclass(frozen=True)
class HistResult:
    mode: Mode
    buckets: list[Bucket]
    cache_hit: bool = False


QueryResult = TableResult | TreeResult | LogResult | HistResult


def resolve_record(record: CommitRecord, mailmap: MailmapRuleSet) -> CommitRecord:
    ident = mailmap.resolve(record.name, record.email)
    if ident.name == record.name and ident.email == record.email:
        return record
    return dataclasses.replace(record, name=ident.name, email=ident.email)


def collect_history(
    source: CommitSource,
    revs: list[str],
    mailmap: MailmapRuleSet,
    repo_state: str,
    worker_count: int | None = None,
) -> History:
    """
    Stream every commit reachable from `revs` through the source, resolving identities.

    With more than one worker the revision list is split into contiguous
    chunks, each parsed by its own worker, and the chunks are concatenated in
    order so the history stays chronological.
    """
    start = time.monotonic()
    if worker_count == 1:
        records = [resolve_record(r, mailmap) for r in source.commits(revs)]
        workers = 1
    else:
        hashes = source.rev_list(revs)
        workers = worker_count or default_worker_count(len(hashes))
        if workers <= 1:
            records = [resolve_record(r, mailmap) for r in source.commits(revs)]
        else:
            parts = run_chunked(
                lambda chunk: [resolve_record(r, mailmap) for r in source.commits_for(chunk)],
                split_chunks(hashes, workers),
                workers,
            )
            records = [r for part in parts for r in part]
    logger.debug(
        "parsed history",
        commits=len(records),
        workers=workers,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    return History(repo_state=repo_state, mailmap=mailmap.fingerprint, records=tuple(records))


def load_history(
    query: Query,
    source: CommitSource,
    cache: CacheStore | None,
    mailmap: MailmapRuleSet,
) -> tuple[History, bool]:
    revs = list(query.revs)
    key = CacheKey(repo_state=source.state_fingerprint(revs), mailmap=mailmap.fingerprint)
    use_cache = cache is not None and query.use_cache

    if use_cache:
        cached = cache.get(key)
        if cached is not None:
            return cached, True

    history = collect_history(source, revs, mailmap, key.repo_state, query.worker_count)
    if use_cache:
        cache.put(key, history)
    return history, False


def select_records(records: Sequence[CommitRecord], filters: Filters) -> list[CommitRecord]:
    return [restrict_paths(r, filters.pathspecs) for r in records if matches(r, filters)]


def run(
    query: Query,
    source: CommitSource,
    cache: CacheStore | None,
    mailmap: MailmapRuleSet,
) -> QueryResult:
    if query.view not in VIEWS:
        raise ValueError(f"Invalid view: {query.view!r} (expected one of: {', '.join(VIEWS)})")

    history, hit = load_history(query, source, cache, mailmap)
    records = history.records
    filters = query.filters

    if query.view == LOG:
        selected = select_records(records, filters)
        if query.limit:
            # Most recent commits, still oldest first.
            selected = selected[-query.limit :]
        return LogResult(records=selected, cache_hit=hit)

    if query.view == HIST:
        return HistResult(mode=query.mode, buckets=build_buckets(select_records(records, filters)), cache_hit=hit)

    # Records in the history are identity-resolved already.
    workers = query.worker_count or default_worker_count(len(records))
    agg = aggregate(records, None, filters, workers)

    if query.view == TREE:
        tree_paths = source.tree_paths(list(query.revs)) if query.show_all else []
        root = build_tree(agg.paths, show_all=query.show_all, tree_paths=tree_paths)
        return TreeResult(mode=query.mode, root=root, depth=query.depth, cache_hit=hit)

    rows = rank_contributors(agg.contributors, query.mode)
    if query.limit:
        rows = rows[: query.limit]
    return TableResult(mode=query.mode, rows=rows, aggregate=agg, cache_hit=hit)
