from __future__ import annotations

import csv
from typing import TextIO

from .analysis_query import HistResult, LogResult, QueryResult, TableResult, TreeResult
from .models import Stats

STATS_COLUMNS = ["commits", "lines_added", "lines_removed", "files", "first_commit_time", "last_commit_time"]


def _stats_row(st: Stats) -> list[object]:
    return [
        st.commits,
        st.lines_added,
        st.lines_removed,
        st.file_count,
        st.first_commit_time if st.first_commit_time is not None else "",
        st.last_commit_time if st.last_commit_time is not None else "",
    ]


def write_table_csv(f: TextIO, result: TableResult) -> None:
    writer = csv.writer(f)
    writer.writerow(["name", "email", *STATS_COLUMNS])
    for ident, st in result.rows:
        writer.writerow([ident.name, ident.email, *_stats_row(st)])


def write_tree_csv(f: TextIO, result: TreeResult) -> None:
    writer = csv.writer(f)
    writer.writerow(["path", "depth", "is_file", *STATS_COLUMNS])
    for depth, node in result.root.walk(result.mode, max_depth=result.depth):
        writer.writerow([node.path, depth, node.is_file and not node.children, *_stats_row(node.stats)])


def write_log_csv(f: TextIO, result: LogResult) -> None:
    writer = csv.writer(f)
    writer.writerow(["hash", "name", "email", "timestamp", "is_merge", "path", "lines_added", "lines_removed"])
    for r in result.records:
        paths = r.paths
        if not paths:
            writer.writerow([r.hash, r.name, r.email, r.timestamp, r.is_merge, "", 0, 0])
            continue
        for path, (added, removed) in paths.items():
            writer.writerow([r.hash, r.name, r.email, r.timestamp, r.is_merge, path, added, removed])


def write_hist_csv(f: TextIO, result: HistResult) -> None:
    writer = csv.writer(f)
    writer.writerow(["bucket", "commits", "leader_name", "leader_email", *STATS_COLUMNS])
    for bucket in result.buckets:
        leader = bucket.leader(result.mode)
        if leader is None:
            writer.writerow([bucket.label, 0, "", "", *_stats_row(Stats())])
            continue
        ident, st = leader
        writer.writerow([bucket.label, bucket.aggregate.commit_count, ident.name, ident.email, *_stats_row(st)])


def write_csv(f: TextIO, result: QueryResult) -> None:
    if isinstance(result, TableResult):
        write_table_csv(f, result)
    elif isinstance(result, TreeResult):
        write_tree_csv(f, result)
    elif isinstance(result, LogResult):
        write_log_csv(f, result)
    else:
        write_hist_csv(f, result)
