"""
Workspace context — everything one dws invocation operates on.

A WorkspaceContext is built once by the entry point and passed
explicitly to every use case: where the workspace lives, which machine
this is, the workspace settings and the clock. Nothing is stored in
module globals, so tests can run isolated workspaces side by side.

Layout (XDG)::

    $XDG_CONFIG_HOME/dws/config.yml                 workspace settings + override layer
    $XDG_CONFIG_HOME/dws/profiles/<name>/dws.yml    profile manifest layer
    $XDG_CONFIG_HOME/dws/profiles/<name>/config/    dotfiles of the profile
    $XDG_STATE_HOME/dws/dws.lock                    lockfile
    $XDG_STATE_HOME/dws/dws.lease                   workspace lease
    $XDG_STATE_HOME/dws/bin/, share/                linked binaries and extras
    $XDG_STATE_HOME/dws/history.ndjson              run history
    $XDG_CACHE_HOME/dws/tools/                      installed tool versions
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from dws.core.models.machine import MachineDescriptor

APP_NAME = "dws"


def _xdg(env: Mapping[str, str], var: str, fallback: str) -> Path:
    value = env.get(var, "").strip()
    if value and Path(value).is_absolute():
        return Path(value)
    return Path(env.get("HOME") or Path.home()) / fallback


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class WorkspacePaths:
    """Filesystem locations of one workspace."""

    config_home: Path
    config_dir: Path
    state_dir: Path
    cache_dir: Path

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> WorkspacePaths:
        env = os.environ if env is None else env
        config_home = _xdg(env, "XDG_CONFIG_HOME", ".config")
        return cls(
            config_home=config_home,
            config_dir=config_home / APP_NAME,
            state_dir=_xdg(env, "XDG_STATE_HOME", ".local/state") / APP_NAME,
            cache_dir=_xdg(env, "XDG_CACHE_HOME", ".cache") / APP_NAME,
        )

    @classmethod
    def under(cls, root: Path) -> WorkspacePaths:
        """All three XDG roots beneath one directory."""
        return cls(
            config_home=root / "config",
            config_dir=root / "config" / APP_NAME,
            state_dir=root / "state" / APP_NAME,
            cache_dir=root / "cache" / APP_NAME,
        )

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.yml"

    @property
    def profiles_dir(self) -> Path:
        return self.config_dir / "profiles"

    def profile_dir(self, name: str) -> Path:
        return self.profiles_dir / name

    def profile_manifest(self, name: str) -> Path:
        return self.profile_dir(name) / "dws.yml"

    def profile_dotfiles(self, name: str) -> Path:
        return self.profile_dir(name) / "config"

    @property
    def lockfile(self) -> Path:
        return self.state_dir / "dws.lock"

    @property
    def lease_file(self) -> Path:
        return self.state_dir / "dws.lease"

    @property
    def bin_dir(self) -> Path:
        return self.state_dir / "bin"

    @property
    def share_dir(self) -> Path:
        return self.state_dir / "share"

    @property
    def history_file(self) -> Path:
        return self.state_dir / "history.ndjson"

    @property
    def tools_cache(self) -> Path:
        return self.cache_dir / "tools"


@dataclass
class WorkspaceContext:
    """The explicit context value passed through every use case."""

    paths: WorkspacePaths
    machine: MachineDescriptor
    active_profile: str | None = None
    jobs: int | None = None
    lease_timeout: float = 5.0
    require_checksum: bool = False
    dotfiles_target: Path | None = None
    clock: Callable[[], str] = field(default=utc_now)

    @property
    def target_root(self) -> Path:
        """Where dotfiles are linked to."""
        return self.dotfiles_target or self.paths.config_home

    @property
    def worker_count(self) -> int:
        if self.jobs:
            return max(1, self.jobs)
        return min(32, (os.cpu_count() or 1) + 4)
