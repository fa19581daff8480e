"""Configuration dataclasses and loader for a world."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.dependency_model.models import SortStrategy
from src.world_shared.config import WorldSettings
from src.world_shared.constants import DEVELOP_BRANCH, LOCAL_BRANCH, MASTER_BRANCH


@dataclass
class BranchConfig:
    """Branch names shared by every repository of the world."""

    develop: str = DEVELOP_BRANCH
    master: str = MASTER_BRANCH
    local: str = LOCAL_BRANCH


@dataclass
class BuildConfig:
    """Configuration for local, CI and develop build passes."""

    with_unit_test: bool = True
    rebuild_all: bool = False


@dataclass
class ReleaseConfig:
    """Configuration for the release workflow."""

    push_master_only_when_stable: bool = True
    reset_roadmap: bool = False
    pull_before_release: bool = True


@dataclass
class WorldConfig:
    """Top-level configuration of one world."""

    name: str = "world"
    branches: BranchConfig = field(default_factory=BranchConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    strategy: SortStrategy = SortStrategy.EVERYTHING_EXCEPT_BUILD_PROJECTS
    state_dir: str = ""
    local_feed_dir: str = ""
    allow_downgrade: bool = False
    log_level: str = ""


def _pick(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter *data* to only keys accepted by *cls*."""
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    return {k: v for k, v in data.items() if k in valid}


def _apply_settings(cfg: WorldConfig, settings: WorldSettings) -> None:
    """Fill values the YAML file left unset from the environment."""
    if not cfg.state_dir:
        cfg.state_dir = settings.state_dir
    if not cfg.local_feed_dir:
        cfg.local_feed_dir = settings.local_feed_dir
    if not cfg.log_level:
        cfg.log_level = settings.log_level
    cfg.allow_downgrade = cfg.allow_downgrade or settings.allow_downgrade


def load_world_config(
    path: Path | str | None = None, settings: WorldSettings | None = None
) -> WorldConfig:
    """Load world configuration from a YAML file.

    Missing sections fall back to defaults.  Unknown keys are silently
    ignored so that forward-compatible config files work.

    Args:
        path: Path to config YAML.  If ``None`` or the file does not
              exist, returns defaults.
        settings: Environment settings; read from the process environment
              when omitted.

    Returns:
        Populated configuration dataclass.
    """
    settings = settings or WorldSettings()
    raw: dict[str, Any] = {}
    if path is not None and Path(path).exists():
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    top_level = _pick(raw, WorldConfig)
    for key in ("branches", "build", "release"):
        top_level.pop(key, None)
    if "strategy" in top_level:
        top_level["strategy"] = SortStrategy(top_level["strategy"])

    cfg = WorldConfig(
        branches=BranchConfig(**_pick(raw.get("branches") or {}, BranchConfig)),
        build=BuildConfig(**_pick(raw.get("build") or {}, BuildConfig)),
        release=ReleaseConfig(**_pick(raw.get("release") or {}, ReleaseConfig)),
        **top_level,
    )
    _apply_settings(cfg, settings)
    return cfg
