from __future__ import annotations

import contextlib
import dataclasses
import gzip
import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from .models import CommitRecord, FileDiff, History

logger = structlog.get_logger(__name__)

FORMAT_VERSION = 2
CACHE_SUFFIX = ".json.gz"


@dataclasses.dataclass(frozen=True)
class CacheKey:
    repo_state: str
    mailmap: str


def cache_path_for(cache_dir: Path, repo_root: Path) -> Path:
    """One cache file per repository, named after the repo and a hash of its absolute root."""
    root = str(repo_root.resolve())
    digest = hashlib.sha256(root.encode("utf-8", errors="replace")).hexdigest()[:16]
    name = repo_root.name or "repo"
    return cache_dir / f"{name}-{digest}{CACHE_SUFFIX}"


def _encode_record(r: CommitRecord) -> list[Any]:
    return [r.hash, r.name, r.email, r.timestamp, r.is_merge, [[d.path, d.added, d.removed, d.old_path, d.deleted] for d in r.diffs]]


def _decode_diff(raw: list[Any]) -> FileDiff:
    path, added, removed, old_path, deleted = raw
    return FileDiff(
        path=str(path),
        added=int(added),
        removed=int(removed),
        old_path=str(old_path) if old_path is not None else None,
        deleted=bool(deleted),
    )


def _decode_record(raw: list[Any]) -> CommitRecord:
    sha, name, email, ts, is_merge, diffs = raw
    return CommitRecord(
        hash=str(sha),
        name=str(name),
        email=str(email),
        timestamp=int(ts),
        is_merge=bool(is_merge),
        diffs=tuple(_decode_diff(d) for d in diffs),
    )


def encode_history(history: History) -> dict[str, Any]:
    return {
        "version": FORMAT_VERSION,
        "repo_state": history.repo_state,
        "mailmap": history.mailmap,
        "records": [_encode_record(r) for r in history.records],
    }


def decode_history(doc: dict[str, Any]) -> History:
    return History(
        repo_state=str(doc["repo_state"]),
        mailmap=str(doc["mailmap"]),
        records=tuple(_decode_record(r) for r in doc["records"]),
    )


class CacheStore:
    """
    Single-file persistent store for the parsed commit history of one repository.

    An entry is only returned when its format version and both fingerprints
    match the requested key. Anything unreadable is treated as a miss, and a
    failed write leaves the previous file in place.
    """

    def __init__(self, path: Path, enabled: bool = True):
        self.path = path
        self.enabled = enabled

    def get(self, key: CacheKey) -> History | None:
        if not self.enabled:
            return None
        try:
            with gzip.open(self.path, "rt", encoding="utf-8") as f:
                doc = json.load(f)
        except FileNotFoundError:
            logger.debug("cache miss", reason="absent", path=str(self.path))
            return None
        except (OSError, EOFError, ValueError) as e:
            logger.warning("cache unreadable; ignoring", path=str(self.path), error=str(e))
            return None

        if not isinstance(doc, dict) or doc.get("version") != FORMAT_VERSION:
            logger.debug("cache miss", reason="version", path=str(self.path))
            return None
        if doc.get("repo_state") != key.repo_state:
            logger.debug("cache miss", reason="repo state changed", path=str(self.path))
            return None
        if doc.get("mailmap") != key.mailmap:
            logger.debug("cache miss", reason="mailmap changed", path=str(self.path))
            return None

        try:
            history = decode_history(doc)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("cache malformed; ignoring", path=str(self.path), error=str(e))
            return None
        logger.debug("cache hit", path=str(self.path), records=len(history.records))
        return history

    def put(self, key: CacheKey, history: History) -> bool:
        if not self.enabled:
            return False
        doc = encode_history(dataclasses.replace(history, repo_state=key.repo_state, mailmap=key.mailmap))
        tmp_name = ""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
            with os.fdopen(fd, "wb") as raw, gzip.GzipFile(fileobj=raw, mode="wb") as gz:
                gz.write(json.dumps(doc, separators=(",", ":")).encode("utf-8"))
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.warning("cache write failed; continuing without cache", path=str(self.path), error=str(e))
            if tmp_name:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            return False
        logger.debug("cache stored", path=str(self.path), records=len(history.records))
        return True

    def clear(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True
