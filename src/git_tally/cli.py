from __future__ import annotations

import argparse
import dataclasses
import sys
from pathlib import Path

import structlog

from .analysis_cache import CacheStore, cache_path_for
from .analysis_filters import FilterError, build_filters
from .analysis_query import HIST, LOG, TABLE, TREE, VIEWS, Query, run
from .analysis_render import render
from .analysis_repo import GitSource
from .analysis_write import write_csv
from .config import ConfigError, default_config_path, load_config, resolve_settings
from .git import GitError, get_repo_toplevel, global_mailmap_path, read_ignore_revs
from .identity import load_mailmap
from .logs import setup_logging

logger = structlog.get_logger(__name__)

DEFAULT_TABLE_LIMIT = 10

_DESCRIPTIONS = {
    TABLE: "Rank contributors by commits, lines, files or activity time.",
    TREE: "Show per-path statistics rolled up into the directory tree.",
    LOG: "List the commits that survive the filters, oldest first.",
    HIST: "Show commit activity over time with the leading contributor per bucket.",
}


def _build_parser(view: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=f"git-tally {view}",
        description=_DESCRIPTIONS[view],
        epilog="Paths after `--` restrict the statistics (prefixes or globs; `:!path` excludes).",
    )
    parser.add_argument("revs", nargs="*", help="Revisions to analyze (default: HEAD).")
    parser.add_argument("-C", "--repo", type=Path, default=Path("."), help="Run as if started in this directory.")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json.")
    parser.add_argument(
        "-m",
        "--mode",
        type=str,
        default=None,
        help="Ranking metric: commits, lines, files, last or first (default: commits).",
    )
    parser.add_argument("--author", action="append", default=[], help="Only commits by authors matching this substring.")
    parser.add_argument("--not-author", action="append", default=[], help="Drop commits by authors matching this substring.")
    parser.add_argument("--since", type=str, default="", help="Only commits at or after this date.")
    parser.add_argument("--until", type=str, default="", help="Only commits before this date.")
    parser.add_argument("--merges", action="store_true", default=None, help="Include merge commits.")
    parser.add_argument("--jobs", type=int, default=None, help="Parallel workers (default: derived from commit count).")
    parser.add_argument("--no-cache", action="store_true", help="Neither read nor write the history cache.")
    parser.add_argument("--clear-cache", action="store_true", help="Delete this repository's cache file first.")
    parser.add_argument("--csv", action="store_true", help="Write CSV to stdout instead of text.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr.")
    if view in (TABLE, HIST):
        parser.add_argument("-e", "--email", action="store_true", help="Show emails instead of names.")
    if view in (TABLE, LOG):
        default = DEFAULT_TABLE_LIMIT if view == TABLE else 0
        parser.add_argument("-n", "--limit", type=int, default=default, help=f"Rows to show, 0 for all (default: {default}).")
    if view == TREE:
        parser.add_argument("-a", "--all", action="store_true", help="Include files without matching activity.")
        parser.add_argument("-d", "--depth", type=int, default=0, help="Maximum depth to show, 0 for all.")
    return parser


def _print_help() -> None:
    print("usage: git-tally [table|tree|log|hist] [options] [revs...] [-- paths...]")
    print("")
    print("commands:")
    for view in VIEWS:
        print(f"  {view:8} {_DESCRIPTIONS[view]}")
    print("")
    print("Run `git-tally <command> --help` for command-specific options.")


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] in ("-h", "--help"):
        _print_help()
        return 0

    view = TABLE
    if argv and argv[0] in VIEWS:
        view, argv = argv[0], argv[1:]

    pathspecs: list[str] = []
    if "--" in argv:
        i = argv.index("--")
        argv, pathspecs = argv[:i], argv[i + 1 :]

    args = _build_parser(view).parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        config = load_config(args.config if args.config is not None else default_config_path())
        settings = resolve_settings(
            config,
            jobs=args.jobs,
            no_cache=args.no_cache,
            mode=args.mode,
            include_merges=args.merges,
        )
        filters = build_filters(
            authors=args.author,
            not_authors=args.not_author,
            since=args.since,
            until=args.until,
            include_merges=settings.include_merges,
            pathspecs=pathspecs,
        )

        root = get_repo_toplevel(args.repo)
        if root is None:
            print(f"error: not a git repository: {args.repo}", file=sys.stderr)
            return 2
        filters = dataclasses.replace(filters, ignore_revs=frozenset(read_ignore_revs(root)))

        cache = CacheStore(cache_path_for(settings.cache_dir, root), enabled=settings.cache_enabled)
        if args.clear_cache and cache.clear():
            logger.info("cache cleared", path=str(cache.path))

        query = Query(
            view=view,
            mode=settings.mode,
            filters=filters,
            revs=tuple(args.revs),
            show_all=bool(getattr(args, "all", False)),
            limit=getattr(args, "limit", None) or None,
            depth=getattr(args, "depth", None) or None,
            worker_count=settings.jobs,
            use_cache=settings.cache_enabled,
        )
        result = run(query, GitSource(root), cache, load_mailmap(root, global_mailmap_path(root)))
    except (ConfigError, FilterError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except GitError as e:
        print(f"git error: {e}", file=sys.stderr)
        return 2

    if args.csv:
        write_csv(sys.stdout, result)
    else:
        sys.stdout.write(render(result, show_email=bool(getattr(args, "email", False))))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
