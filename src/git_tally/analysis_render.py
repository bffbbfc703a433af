from __future__ import annotations

import datetime as dt

from .analysis_hist import Bucket
from .analysis_modes import Mode
from .analysis_query import HistResult, LogResult, QueryResult, TableResult, TreeResult
from .models import Identity, Stats


def fmt_int(n: int) -> str:
    return f"{int(n):,}"


def trunc(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    if max_len <= 1:
        return s[:max_len]
    return s[: max_len - 1] + "…"


def bar(value: int, max_value: int, width: int = 22) -> str:
    if max_value <= 0:
        filled = 0
    else:
        filled = int(round((value / max_value) * width))
    filled = max(0, min(width, filled))
    return "[" + ("#" * filled) + ("-" * (width - filled)) + "]"


def fmt_date(ts: int | None) -> str:
    if ts is None:
        return "-"
    return dt.datetime.fromtimestamp(ts, tz=dt.timezone.utc).date().isoformat()


def fmt_ago(ts: int | None, now: dt.datetime | None = None) -> str:
    if ts is None:
        return "-"
    if now is None:
        now = dt.datetime.now(dt.timezone.utc)
    secs = max(0, int(now.timestamp()) - ts)
    for unit, size in (("year", 365 * 86_400), ("month", 30 * 86_400), ("week", 7 * 86_400), ("day", 86_400)):
        if secs >= size:
            n = secs // size
            return f"{n} {unit}{'s' if n != 1 else ''} ago"
    return "today"


def fmt_identity(ident: Identity, show_email: bool) -> str:
    if show_email:
        return ident.email or ident.name or "unknown"
    return ident.name or ident.email or "unknown"


def fmt_metric(mode: Mode, st: Stats) -> str:
    if mode is Mode.LINES:
        return f"+{fmt_int(st.lines_added)} / -{fmt_int(st.lines_removed)}"
    if mode is Mode.FILES:
        return fmt_int(st.file_count)
    if mode is Mode.LAST_MODIFIED:
        return fmt_date(st.last_commit_time)
    if mode is Mode.FIRST_MODIFIED:
        return fmt_date(st.first_commit_time)
    return fmt_int(st.commits)


def _bar_value(mode: Mode, st: Stats) -> int:
    if mode in (Mode.LAST_MODIFIED, Mode.FIRST_MODIFIED):
        return 0
    return mode.metric(st)


def render_table(result: TableResult, *, show_email: bool = False, now: dt.datetime | None = None) -> str:
    lines: list[str] = []
    lines.append(f"{'Author':32} {'Last edit':>16} {'Commits':>9} {'Files':>7} {'Lines (+/-)':>22}")
    lines.append("-" * 90)
    for ident, st in result.rows:
        label = trunc(fmt_identity(ident, show_email), 32)
        lines_s = f"+{fmt_int(st.lines_added)} / -{fmt_int(st.lines_removed)}"
        lines.append(
            f"{label:32} {fmt_ago(st.last_commit_time, now):>16} {fmt_int(st.commits):>9} "
            f"{fmt_int(st.file_count):>7} {lines_s:>22}"
        )
    if not result.rows:
        lines.append("(no commits matched)")
    hidden = len(result.aggregate.contributors) - len(result.rows)
    if hidden > 0:
        lines.append(f"...{fmt_int(hidden)} more")
    return "\n".join(lines) + "\n"


def render_tree(result: TreeResult) -> str:
    mode = result.mode
    nodes = list(result.root.walk(mode, max_depth=result.depth))
    max_value = max((_bar_value(mode, n.stats) for _, n in nodes), default=0)
    lines: list[str] = []
    for depth, node in nodes:
        label = trunc("  " * depth + node.label, 48)
        lines.append(f"{label:48} {fmt_metric(mode, node.stats):>22}  {bar(_bar_value(mode, node.stats), max_value)}")
    if not nodes:
        lines.append("(no paths matched)")
    return "\n".join(lines) + "\n"


def render_log(result: LogResult) -> str:
    lines: list[str] = []
    for r in result.records:
        merge = " (merge)" if r.is_merge else ""
        totals = f"+{fmt_int(r.lines_added)} -{fmt_int(r.lines_removed)}"
        lines.append(f"{r.short_hash} {fmt_date(r.timestamp)} {r.name} <{r.email}>{merge}  {totals}")
        for path, (added, removed) in r.paths.items():
            lines.append(f"    {path}  +{fmt_int(added)} -{fmt_int(removed)}")
    if not result.records:
        lines.append("(no commits matched)")
    return "\n".join(lines) + "\n"


def _leader_s(bucket: Bucket, mode: Mode, show_email: bool) -> str:
    leader = bucket.leader(mode)
    if leader is None:
        return ""
    ident, st = leader
    return f"{trunc(fmt_identity(ident, show_email), 28)} ({fmt_metric(mode, st)})"


def render_hist(result: HistResult, *, show_email: bool = False) -> str:
    mode = result.mode
    totals = [b.aggregate.commit_count for b in result.buckets]
    max_commits = max(totals, default=0)
    lines: list[str] = []
    for bucket, total in zip(result.buckets, totals):
        leader = _leader_s(bucket, mode, show_email)
        lines.append(f"{bucket.label:10} {fmt_int(total):>8}  {bar(total, max_commits, width=16)}  {leader}")
    if not result.buckets:
        lines.append("(no commits matched)")
    return "\n".join(lines) + "\n"


def render(result: QueryResult, *, show_email: bool = False) -> str:
    if isinstance(result, TableResult):
        return render_table(result, show_email=show_email)
    if isinstance(result, TreeResult):
        return render_tree(result)
    if isinstance(result, LogResult):
        return render_log(result)
    return render_hist(result, show_email=show_email)
