from __future__ import annotations

import dataclasses
import json
import os
from collections.abc import Mapping
from pathlib import Path

from .analysis_modes import Mode

APP_NAME = "git-tally"
DISABLE_CACHE_ENV = "GIT_TALLY_DISABLE_CACHE"


class ConfigError(ValueError):
    pass


@dataclasses.dataclass(frozen=True)
class Settings:
    jobs: int | None = None  # None: derived from the number of commits
    cache_enabled: bool = True
    cache_dir: Path = Path.home() / ".cache" / APP_NAME
    mode: Mode = Mode.COMMITS
    include_merges: bool = False


def load_config(config_path: Path) -> dict:
    if not config_path.exists():
        return {}
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {config_path}: expected a JSON object")
    return data


def _xdg_dir(env: Mapping[str, str], var: str, fallback: str) -> Path:
    base = (env.get(var) or "").strip()
    if base and Path(base).is_absolute():
        return Path(base) / APP_NAME
    return Path.home() / fallback / APP_NAME


def default_config_path(env: Mapping[str, str] | None = None) -> Path:
    return _xdg_dir(os.environ if env is None else env, "XDG_CONFIG_HOME", ".config") / "config.json"


def default_cache_dir(env: Mapping[str, str] | None = None) -> Path:
    return _xdg_dir(os.environ if env is None else env, "XDG_CACHE_HOME", ".cache")


def _as_bool(value: object, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Config key {key!r} must be true or false, got {value!r}")


def resolve_settings(
    config: Mapping[str, object],
    *,
    env: Mapping[str, str] | None = None,
    jobs: int | None = None,
    no_cache: bool = False,
    mode: str | None = None,
    include_merges: bool | None = None,
) -> Settings:
    """
    Merge CLI values, environment and config file into Settings.

    Precedence is CLI flag, then environment, then config file, then default.
    """
    env = os.environ if env is None else env

    if jobs is None and config.get("jobs") is not None:
        try:
            jobs = int(str(config["jobs"]))
        except (TypeError, ValueError):
            raise ConfigError(f"Config key 'jobs' must be an integer, got {config['jobs']!r}") from None
    if jobs is not None and jobs < 1:
        raise ConfigError(f"jobs must be >= 1, got {jobs}")

    if no_cache or (env.get(DISABLE_CACHE_ENV) or "").strip():
        cache_enabled = False
    elif "cache" in config:
        cache_enabled = _as_bool(config["cache"], "cache")
    else:
        cache_enabled = True

    cache_dir_cfg = str(config.get("cache_dir") or "").strip()
    cache_dir = Path(os.path.expanduser(cache_dir_cfg)) if cache_dir_cfg else default_cache_dir(env)

    mode_s = mode if mode is not None else str(config.get("mode") or Mode.COMMITS.value)
    try:
        resolved_mode = Mode.parse(mode_s)
    except ValueError as e:
        raise ConfigError(str(e)) from None

    if include_merges is None:
        include_merges = _as_bool(config["include_merges"], "include_merges") if "include_merges" in config else False

    return Settings(
        jobs=jobs,
        cache_enabled=cache_enabled,
        cache_dir=cache_dir,
        mode=resolved_mode,
        include_merges=include_merges,
    )
