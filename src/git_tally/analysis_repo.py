from __future__ import annotations

import dataclasses
import subprocess
import threading
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Protocol

import structlog

from . import git
from .analysis_paths import normalize_numstat_path, numstat_rename_source
from .git import GitError
from .models import CommitRecord, FileDiff

logger = structlog.get_logger(__name__)

HEADER = "@@@"
PRETTY = HEADER + "%H\t%P\t%ad\t%an\t%ae"
LOG_ARGS = [
    "-c",
    "core.quotePath=false",
    "log",
    "--no-mailmap",
    "-M",
    "--numstat",
    "--summary",
    "--date=unix",
    f"--pretty=format:{PRETTY}",
]

DELETE_SUMMARY = " delete mode "

_QUOTED = {"\\\\": "\\", '\\"': '"', "\\t": "\t", "\\n": "\n"}


class CommitSource(Protocol):
    def state_fingerprint(self, revs: list[str]) -> str: ...

    def rev_list(self, revs: list[str]) -> list[str]: ...

    def commits(self, revs: list[str]) -> Iterator[CommitRecord]: ...

    def commits_for(self, hashes: Sequence[str]) -> list[CommitRecord]: ...

    def tree_paths(self, revs: list[str]) -> list[str]: ...


def _unquote(path: str) -> str:
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path
    body = path[1:-1]
    out: list[str] = []
    i = 0
    while i < len(body):
        pair = body[i : i + 2]
        if pair in _QUOTED:
            out.append(_QUOTED[pair])
            i += 2
        else:
            out.append(body[i])
            i += 1
    return "".join(out)


def _parse_header(line: str) -> tuple[str, bool, int, str, str]:
    parts = line[len(HEADER) :].split("\t", 4)
    if len(parts) != 5 or not parts[0]:
        raise GitError(f"malformed commit header: {line[:200]!r}")
    sha, parents, date_s, name, email = parts
    try:
        ts = int(date_s.strip())
    except ValueError:
        raise GitError(f"malformed commit date in header: {line[:200]!r}") from None
    return sha, len(parents.split()) > 1, ts, name, email


def _parse_numstat(line: str) -> FileDiff:
    parts = line.split("\t", 2)
    if len(parts) != 3 or not parts[2]:
        raise GitError(f"malformed numstat line: {line[:200]!r}")
    added_s, removed_s, raw_path = parts
    raw_path = _unquote(raw_path)
    path = normalize_numstat_path(raw_path)
    old_path = numstat_rename_source(raw_path)
    if added_s == "-" and removed_s == "-":
        # Binary file.
        return FileDiff(path=path, old_path=old_path)
    try:
        return FileDiff(path=path, added=int(added_s), removed=int(removed_s), old_path=old_path)
    except ValueError:
        raise GitError(f"malformed numstat line: {line[:200]!r}") from None


def _mark_deleted(diffs: list[FileDiff], line: str) -> None:
    # " delete mode 100644 path/to/file"
    parts = line[len(DELETE_SUMMARY) :].split(" ", 1)
    if len(parts) != 2 or not parts[1]:
        raise GitError(f"malformed summary line: {line[:200]!r}")
    path = _unquote(parts[1])
    for i in range(len(diffs) - 1, -1, -1):
        if diffs[i].path == path:
            diffs[i] = dataclasses.replace(diffs[i], deleted=True)
            return
    diffs.append(FileDiff(path=path, deleted=True))


def parse_log_lines(lines: Iterable[str]) -> Iterator[CommitRecord]:
    """
    Parse `git log --numstat --summary` output produced with the `@@@` pretty header.

    Each header starts a commit; the numstat lines that follow are its diffs.
    Summary lines (indented by one space) mark deleted files; other summary
    kinds are skipped. Lines before the first header, or lines that fit
    none of these shapes, raise GitError.
    """
    header: tuple[str, bool, int, str, str] | None = None
    diffs: list[FileDiff] = []

    for raw_line in lines:
        line = raw_line.rstrip("\n")
        if not line:
            continue
        if line.startswith(HEADER):
            if header is not None:
                yield _record(header, diffs)
            header = _parse_header(line)
            diffs = []
            continue
        if header is None:
            raise GitError(f"numstat line before any commit header: {line[:200]!r}")
        if line.startswith(DELETE_SUMMARY):
            _mark_deleted(diffs, line)
        elif line.startswith(" "):
            continue
        else:
            diffs.append(_parse_numstat(line))

    if header is not None:
        yield _record(header, diffs)


def _record(header: tuple[str, bool, int, str, str], diffs: list[FileDiff]) -> CommitRecord:
    sha, is_merge, ts, name, email = header
    return CommitRecord(hash=sha, name=name, email=email, timestamp=ts, is_merge=is_merge, diffs=tuple(diffs))


def stream_log(repo: Path, args: list[str], stdin_text: str | None = None) -> Iterator[CommitRecord]:
    cmd = ["git", *LOG_ARGS, *args]
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(repo),
            stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise GitError(f"failed to start git log: {e}") from e

    stderr_chunks: list[str] = []
    stderr_chars = 0
    max_stderr_chars = 50_000

    def drain_stderr() -> None:
        nonlocal stderr_chars
        if proc.stderr is None:
            return
        while True:
            chunk = proc.stderr.read(8192)
            if not chunk:
                return
            if stderr_chars >= max_stderr_chars:
                continue
            take = chunk[: max_stderr_chars - stderr_chars]
            stderr_chunks.append(take)
            stderr_chars += len(take)

    stderr_thread = threading.Thread(target=drain_stderr, daemon=True)
    stderr_thread.start()

    try:
        if stdin_text is not None and proc.stdin is not None:
            # git log --stdin reads every revision before writing output.
            proc.stdin.write(stdin_text)
            proc.stdin.close()
        assert proc.stdout is not None
        yield from parse_log_lines(proc.stdout)
    finally:
        if proc.poll() is None and proc.stdout is not None and not proc.stdout.closed:
            proc.stdout.close()
        code = proc.wait()
        stderr_thread.join()

    if code != 0:
        raise GitError(f"git log exited {code}: {''.join(stderr_chunks).strip()[:500]}")


class GitSource:
    """Commit source backed by the `git` binary of one repository."""

    def __init__(self, root: Path):
        self.root = root

    def state_fingerprint(self, revs: list[str]) -> str:
        return git.state_fingerprint(self.root, revs)

    def rev_list(self, revs: list[str]) -> list[str]:
        return git.rev_list(self.root, revs)

    def commits(self, revs: list[str]) -> Iterator[CommitRecord]:
        return stream_log(self.root, ["--reverse", *(revs or ["HEAD"]), "--"])

    def commits_for(self, hashes: Sequence[str]) -> list[CommitRecord]:
        if not hashes:
            return []
        records = list(stream_log(self.root, ["--stdin", "--no-walk=unsorted"], stdin_text="\n".join(hashes) + "\n"))
        logger.debug("parsed commit chunk", hashes=len(hashes), records=len(records))
        return records

    def tree_paths(self, revs: list[str]) -> list[str]:
        return git.ls_tree(self.root, git.tree_rev(revs))
