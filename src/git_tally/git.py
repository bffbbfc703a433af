from __future__ import annotations

import hashlib
import os
import subprocess
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

IGNORE_REVS_FILE = ".git-blame-ignore-revs"


class GitError(RuntimeError):
    pass


def run_git(args: list[str], cwd: Path, timeout_s: int = 300) -> tuple[int, str, str]:
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout_s,
        )
    except FileNotFoundError as e:
        raise GitError(f"git executable not found: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git {' '.join(args[:2])} timed out after {timeout_s}s") from e
    return proc.returncode, proc.stdout, proc.stderr


def check_git(args: list[str], cwd: Path, timeout_s: int = 300) -> str:
    code, out, err = run_git(args, cwd=cwd, timeout_s=timeout_s)
    if code != 0:
        raise GitError(f"git {' '.join(args)} exited {code}: {err.strip()[:500]}")
    return out


def get_repo_toplevel(candidate: Path) -> Optional[Path]:
    code, out, _ = run_git(["rev-parse", "--show-toplevel"], cwd=candidate)
    if code != 0 or not out.strip():
        return None
    return Path(out.strip()).resolve()


def config_get(repo: Path, key: str, *, as_path: bool = False) -> str:
    args = ["config"]
    if as_path:
        args.append("--type=path")
    code, out, _ = run_git([*args, "--get", key], cwd=repo)
    # Exit code 1 means the key is unset.
    if code != 0:
        return ""
    return out.strip()


def global_mailmap_path(repo: Path) -> Optional[Path]:
    value = config_get(repo, "mailmap.file", as_path=True)
    if not value:
        return None
    p = Path(os.path.expanduser(value))
    if not p.is_absolute():
        p = repo / p
    return p


def rev_parse(repo: Path, revs: list[str]) -> list[str]:
    out = check_git(["rev-parse", *(revs or ["HEAD"])], cwd=repo)
    return [line.strip() for line in out.splitlines() if line.strip()]


def state_fingerprint(repo: Path, revs: list[str]) -> str:
    """Hash of the requested revisions and the commits they currently resolve to."""
    h = hashlib.sha256()
    for rev in revs or ["HEAD"]:
        h.update(rev.encode("utf-8", errors="replace") + b"\0")
    h.update(b"\n")
    for sha in rev_parse(repo, revs):
        h.update(sha.encode("ascii", errors="replace") + b"\n")
    return h.hexdigest()


def rev_list(repo: Path, revs: list[str]) -> list[str]:
    """Commit hashes reachable from `revs`, oldest first."""
    out = check_git(["rev-list", "--reverse", *(revs or ["HEAD"]), "--"], cwd=repo, timeout_s=3600)
    return [line.strip() for line in out.splitlines() if line.strip()]


def tree_rev(revs: list[str]) -> str:
    """The revision whose tree backs `tree --all`: the first positive rev, or the tip of a range."""
    for rev in revs:
        if rev.startswith(("^", "-")):
            continue
        for sep in ("...", ".."):
            if sep in rev:
                rev = rev.split(sep, 1)[1]
                break
        return rev or "HEAD"
    return "HEAD"


def ls_tree(repo: Path, rev: str) -> list[str]:
    out = check_git(["ls-tree", "-r", "-z", "--name-only", rev, "--"], cwd=repo)
    return [p for p in out.split("\0") if p]


def read_ignore_revs(repo: Path) -> set[str]:
    """Revisions listed in .git-blame-ignore-revs; comments and blank lines skipped."""
    path = repo / IGNORE_REVS_FILE
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return set()
    except OSError as e:
        logger.warning("ignore-revs file unreadable; ignoring", path=str(path), error=str(e))
        return set()
    revs: set[str] = set()
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if line:
            revs.add(line)
    return revs
