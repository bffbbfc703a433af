from __future__ import annotations

from pathlib import Path

import pytest

from git_tally.analysis_modes import Mode
from git_tally.config import (
    ConfigError,
    default_cache_dir,
    default_config_path,
    load_config,
    resolve_settings,
)


def test_load_config_missing_file_is_empty(tmp_path: Path) -> None:
    assert load_config(tmp_path / "nope.json") == {}


def test_load_config_rejects_invalid_json(tmp_path: Path) -> None:
    p = tmp_path / "config.json"
    p.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)
    p.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)


def test_xdg_locations() -> None:
    env = {"XDG_CACHE_HOME": "/xdg/cache", "XDG_CONFIG_HOME": "/xdg/config"}
    assert default_cache_dir(env) == Path("/xdg/cache/git-tally")
    assert default_config_path(env) == Path("/xdg/config/git-tally/config.json")
    assert default_cache_dir({"XDG_CACHE_HOME": "relative"}) == Path.home() / ".cache" / "git-tally"


def test_defaults() -> None:
    s = resolve_settings({}, env={})
    assert s.jobs is None
    assert s.cache_enabled is True
    assert s.mode is Mode.COMMITS
    assert s.include_merges is False
    assert s.cache_dir == Path.home() / ".cache" / "git-tally"


def test_precedence_cli_over_env_over_config() -> None:
    config = {"jobs": 3, "cache": True, "mode": "lines", "include_merges": True, "cache_dir": "/tmp/tally-cache"}

    s = resolve_settings(config, env={})
    assert (s.jobs, s.cache_enabled, s.mode, s.include_merges) == (3, True, Mode.LINES, True)
    assert s.cache_dir == Path("/tmp/tally-cache")

    s = resolve_settings(config, env={"GIT_TALLY_DISABLE_CACHE": "1"})
    assert s.cache_enabled is False

    s = resolve_settings(config, env={}, jobs=1, no_cache=True, mode="files", include_merges=False)
    assert (s.jobs, s.cache_enabled, s.mode, s.include_merges) == (1, False, Mode.FILES, False)


def test_config_can_disable_cache() -> None:
    assert resolve_settings({"cache": False}, env={}).cache_enabled is False


@pytest.mark.parametrize(
    "config,kwargs",
    [
        ({"jobs": "many"}, {}),
        ({}, {"jobs": 0}),
        ({"cache": "yes"}, {}),
        ({"mode": "popularity"}, {}),
        ({}, {"mode": "bogus"}),
    ],
)
def test_invalid_settings(config: dict, kwargs: dict) -> None:
    with pytest.raises(ConfigError):
        resolve_settings(config, env={}, **kwargs)
