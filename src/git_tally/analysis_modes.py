from __future__ import annotations

import enum

from .models import Identity, Stats


class Mode(str, enum.Enum):
    COMMITS = "commits"
    LINES = "lines"
    FILES = "files"
    LAST_MODIFIED = "last"
    FIRST_MODIFIED = "first"

    @classmethod
    def parse(cls, value: str) -> Mode:
        v = (value or "").strip().lower()
        aliases = {"c": "commits", "l": "lines", "f": "files", "last-modified": "last", "first-modified": "first"}
        v = aliases.get(v, v)
        for mode in cls:
            if mode.value == v:
                return mode
        raise ValueError(f"Invalid mode: {value!r} (expected one of: {', '.join(m.value for m in cls)})")

    def metric(self, st: Stats) -> int:
        if self is Mode.COMMITS:
            return st.commits
        if self is Mode.LINES:
            return st.lines
        if self is Mode.FILES:
            return st.file_count
        if self is Mode.LAST_MODIFIED:
            return st.last_commit_time if st.last_commit_time is not None else -1
        # Earliest first activity ranks highest.
        return -st.first_commit_time if st.first_commit_time is not None else -(2**63)


def rank_contributors(contributors: dict[Identity, Stats], mode: Mode) -> list[tuple[Identity, Stats]]:
    """Rank by the mode metric descending; ties by name, then email."""
    return sorted(
        contributors.items(),
        key=lambda kv: (-mode.metric(kv[1]), kv[0].name.casefold(), kv[0].email.casefold()),
    )
