"""
Profile use cases — list profiles and switch the active one.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from dws.core.config.loader import list_profiles, set_active_profile
from dws.core.context import WorkspacePaths
from dws.core.errors import ConfigError


@dataclass
class ProfilesResult:
    profiles: list[str] = field(default_factory=list)
    active: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"profiles": self.profiles, "active": self.active}


def show_profiles(paths: WorkspacePaths, active: str | None) -> ProfilesResult:
    return ProfilesResult(profiles=list_profiles(paths), active=active)


def use_profile(paths: WorkspacePaths, name: str) -> ProfilesResult:
    """Make ``name`` the active profile. Takes effect on the next sync."""
    result = ProfilesResult(profiles=list_profiles(paths))
    try:
        set_active_profile(paths, name)
    except ConfigError as e:
        result.error = str(e)
        return result
    result.active = name
    return result
