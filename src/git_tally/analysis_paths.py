from __future__ import annotations

import fnmatch
import re

_RENAME_BRACES = re.compile(r"\{([^{}]*?) => ([^{}]*?)\}")
_EXCLUDE_MAGIC = (":!", ":^", ":(exclude)")
_GLOB_CHARS = ("*", "?", "[")


def _rename_side(path: str, side: int) -> str:
    p = path.strip()
    # `git log --numstat` renders renames like: src/{old => new}/file.py, src/{ => sub}/f.py or old.py => new.py
    if " => " in p:
        if "{" in p:
            p = _RENAME_BRACES.sub(lambda m: m.group(side), p)
        else:
            p = p.split(" => ")[side - 1]
        while "//" in p:
            p = p.replace("//", "/")
        p = p.strip("/")
    return p.strip()


def normalize_numstat_path(path: str) -> str:
    return _rename_side(path, 2)


def numstat_rename_source(path: str) -> str | None:
    """The pre-rename path of a numstat rename entry, or None for a plain path."""
    if " => " not in path:
        return None
    return _rename_side(path, 1)


def clean_path(path: str) -> str:
    p = path.replace("\\", "/").strip()
    while p.startswith("./"):
        p = p[2:]
    parts = [x for x in p.split("/") if x and x != "."]
    return "/".join(parts)


def split_path(path: str) -> list[str]:
    p = clean_path(path)
    return p.split("/") if p else []


def is_exclude_pathspec(spec: str) -> bool:
    return spec.startswith(_EXCLUDE_MAGIC)


def strip_pathspec_magic(spec: str) -> str:
    for magic in _EXCLUDE_MAGIC:
        if spec.startswith(magic):
            return spec[len(magic) :]
    return spec


def split_pathspecs(pathspecs: tuple[str, ...] | list[str]) -> tuple[list[str], list[str]]:
    includes: list[str] = []
    excludes: list[str] = []
    for spec in pathspecs:
        if is_exclude_pathspec(spec):
            excludes.append(clean_path(strip_pathspec_magic(spec)))
        else:
            includes.append(clean_path(spec))
    return includes, excludes


def pathspec_match(spec: str, path: str) -> bool:
    """
    Match a cleaned pathspec against a repository path.

    Plain specs match the path itself or anything below it; specs holding glob
    characters are matched with fnmatch. An empty spec (".") matches everything.
    """
    if not spec:
        return True
    p = clean_path(path)
    if any(ch in spec for ch in _GLOB_CHARS):
        return fnmatch.fnmatchcase(p, spec) or fnmatch.fnmatchcase(p, spec.rstrip("/") + "/*")
    s = spec.rstrip("/")
    return p == s or p.startswith(s + "/")


def path_selected(path: str, includes: list[str], excludes: list[str]) -> bool:
    selected = not includes or any(pathspec_match(spec, path) for spec in includes)
    if not selected:
        return False
    return not any(pathspec_match(spec, path) for spec in excludes)
