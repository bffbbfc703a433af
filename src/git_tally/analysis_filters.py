from __future__ import annotations

import dataclasses
import datetime as dt
import re

from .analysis_paths import clean_path, path_selected, split_pathspecs, strip_pathspec_magic
from .models import CommitRecord, Identity

_AGO = re.compile(r"^(\d+)\s*(second|minute|hour|day|week|month|year)s?\s+ago$", re.IGNORECASE)
_UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86_400,
    "week": 7 * 86_400,
    "month": 30 * 86_400,
    "year": 365 * 86_400,
}


class FilterError(ValueError):
    pass


@dataclasses.dataclass(frozen=True)
class Filters:
    authors: tuple[str, ...] = ()
    not_authors: tuple[str, ...] = ()
    since: int | None = None  # inclusive, unix seconds
    until: int | None = None  # exclusive, unix seconds
    include_merges: bool = False
    pathspecs: tuple[str, ...] = ()
    ignore_revs: frozenset[str] = frozenset()


def _identity_matches(identity: Identity, needle: str) -> bool:
    n = needle.casefold()
    return n in identity.name.casefold() or n in identity.email.casefold()


def matches_identity(identity: Identity, filters: Filters) -> bool:
    if filters.authors and not any(_identity_matches(identity, a) for a in filters.authors):
        return False
    if any(_identity_matches(identity, a) for a in filters.not_authors):
        return False
    return True


def restrict_paths(record: CommitRecord, pathspecs: tuple[str, ...]) -> CommitRecord:
    if not pathspecs:
        return record
    includes, excludes = split_pathspecs(pathspecs)
    diffs = tuple(d for d in record.diffs if path_selected(d.path, includes, excludes))
    if len(diffs) == len(record.diffs):
        return record
    return dataclasses.replace(record, diffs=diffs)


def matches(record: CommitRecord, filters: Filters, identity: Identity | None = None) -> bool:
    """
    Decide whether a commit survives the filters.

    `identity` is the canonical identity of the record's author; when omitted,
    the record's own name and email are taken as already canonical. With
    pathspecs active, a commit must touch at least one selected path.
    """
    if record.hash in filters.ignore_revs:
        return False
    if record.is_merge and not filters.include_merges:
        return False
    if filters.since is not None and record.timestamp < filters.since:
        return False
    if filters.until is not None and record.timestamp >= filters.until:
        return False
    if filters.authors or filters.not_authors:
        ident = identity if identity is not None else Identity(record.name, record.email)
        if not matches_identity(ident, filters):
            return False
    if filters.pathspecs:
        includes, excludes = split_pathspecs(filters.pathspecs)
        if not any(path_selected(d.path, includes, excludes) for d in record.diffs):
            return False
    return True


def parse_when(text: str, *, now: dt.datetime | None = None) -> int:
    """
    Parse a --since/--until value into unix seconds.

    Accepts YYYY-MM-DD, ISO-8601 datetimes (naive values are UTC), @<unix
    seconds> and "N <unit>s ago".
    """
    s = (text or "").strip()
    if not s:
        raise FilterError("empty date")
    if s.startswith("@") and s[1:].isdigit():
        return int(s[1:])

    m = _AGO.match(s)
    if m:
        if now is None:
            now = dt.datetime.now(dt.timezone.utc)
        delta = int(m.group(1)) * _UNIT_SECONDS[m.group(2).lower()]
        return int(now.timestamp()) - delta

    iso = s[:-1] + "+00:00" if s.endswith("Z") else s
    try:
        if len(iso) == 10:
            d = dt.date.fromisoformat(iso)
            parsed = dt.datetime(d.year, d.month, d.day, tzinfo=dt.timezone.utc)
        else:
            parsed = dt.datetime.fromisoformat(iso)
    except ValueError:
        raise FilterError(f"Invalid date: {text!r} (expected YYYY-MM-DD, ISO-8601, @<unix> or 'N days ago')") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return int(parsed.timestamp())


def build_filters(
    *,
    authors: list[str] | tuple[str, ...] = (),
    not_authors: list[str] | tuple[str, ...] = (),
    since: str = "",
    until: str = "",
    include_merges: bool = False,
    pathspecs: list[str] | tuple[str, ...] = (),
    ignore_revs: set[str] | frozenset[str] = frozenset(),
    now: dt.datetime | None = None,
) -> Filters:
    since_ts = parse_when(since, now=now) if str(since).strip() else None
    until_ts = parse_when(until, now=now) if str(until).strip() else None
    if since_ts is not None and until_ts is not None and since_ts >= until_ts:
        raise FilterError(f"--since ({since}) must be before --until ({until})")

    specs: list[str] = []
    for spec in pathspecs:
        s = spec.strip()
        if s in (".", "./"):
            continue
        if not clean_path(strip_pathspec_magic(s)):
            raise FilterError(f"Invalid pathspec: {spec!r}")
        specs.append(s)

    for who in [*authors, *not_authors]:
        if not str(who).strip():
            raise FilterError("author filters must not be empty")

    return Filters(
        authors=tuple(str(a).strip() for a in authors),
        not_authors=tuple(str(a).strip() for a in not_authors),
        since=since_ts,
        until=until_ts,
        include_merges=include_merges,
        pathspecs=tuple(specs),
        ignore_revs=frozenset(ignore_revs),
    )
