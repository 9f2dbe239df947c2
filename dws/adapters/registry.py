"""
Backend registry — maps installer kinds to backends.

The reconciler looks a backend up once per tool while planning and
hands it to the worker that executes the action. Mock mode swaps every
kind for a single in-memory backend.
"""

from __future__ import annotations

import logging
from typing import Any

from dws.adapters.base import InstallerBackend
from dws.core.errors import BackendError
from dws.core.models.tool import InstallerKind

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Registry and lookup for installer backends."""

    def __init__(self, mock_mode: bool = False):
        self._backends: dict[InstallerKind, InstallerBackend] = {}
        self._mock_mode = mock_mode
        self._mock_backend: InstallerBackend | None = None

    @classmethod
    def default(cls) -> BackendRegistry:
        """Registry with every real backend registered."""
        from dws.adapters.forge import GithubReleaseBackend, GitlabReleaseBackend
        from dws.adapters.script import ScriptBackend
        from dws.adapters.system import DiskImageBackend, FlatpakBackend

        registry = cls()
        for backend in (
            GithubReleaseBackend(),
            GitlabReleaseBackend(),
            ScriptBackend(),
            DiskImageBackend(),
            FlatpakBackend(),
        ):
            registry.register(backend)
        return registry

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(self, enabled: bool, mock_backend: InstallerBackend | None = None) -> None:
        """Route every kind to ``mock_backend`` (default: an empty MockBackend)."""
        if enabled and mock_backend is None:
            from dws.adapters.mock import MockBackend

            mock_backend = MockBackend()
        self._mock_mode = enabled
        self._mock_backend = mock_backend

    def register(self, backend: InstallerBackend) -> None:
        for kind in backend.kinds:
            if kind in self._backends:
                logger.warning("Overwriting backend for %s: %s", kind.value, backend.name)
            self._backends[kind] = backend
        logger.debug("Registered backend %s for %s", backend.name, sorted(k.value for k in backend.kinds))

    def get(self, kind: InstallerKind) -> InstallerBackend | None:
        if self._mock_mode and self._mock_backend is not None:
            return self._mock_backend
        return self._backends.get(kind)

    def for_kind(self, kind: InstallerKind) -> InstallerBackend:
        """Like ``get`` but raises BackendError when nothing is registered."""
        backend = self.get(kind)
        if backend is None:
            raise BackendError(f"No installer backend registered for '{kind.value}'")
        return backend

    def list_backends(self) -> list[str]:
        return sorted({b.name for b in self._backends.values()})

    def backend_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered backend."""
        status: dict[str, dict[str, Any]] = {}
        for backend in self._backends.values():
            if backend.name in status:
                continue
            status[backend.name] = {
                "name": backend.name,
                "available": backend.is_available(),
                "kinds": sorted(k.value for k in backend.kinds),
                "type": backend.__class__.__name__,
            }
        return status
