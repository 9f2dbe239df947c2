"""Adapters — installer backends for external release sources.

Public re-exports for convenient access.
"""

from dws.adapters.base import FetchedArtifact, InstallerBackend, Release, ReleaseAsset
from dws.adapters.mock import MockBackend
from dws.adapters.registry import BackendRegistry

__all__ = [
    "BackendRegistry",
    "FetchedArtifact",
    "InstallerBackend",
    "MockBackend",
    "Release",
    "ReleaseAsset",
]
