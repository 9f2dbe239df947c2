"""
Workspace resolution shared by every use case.

Reads the manifest layers and the active profile's dotfiles and
resolves them for this machine.
"""

from __future__ import annotations

import logging

from dws.core.config.loader import load_layers
from dws.core.context import WorkspaceContext
from dws.core.models.tool import ResolvedState
from dws.core.services import dotfiles
from dws.core.services.manifest_resolver import resolve

logger = logging.getLogger(__name__)


def resolve_workspace(ctx: WorkspaceContext) -> ResolvedState:
    """Desired state for the context's machine and active profile.

    Raises:
        ManifestError: invalid or ambiguous declarations.
        ConfigError: unreadable configuration.
    """
    if ctx.active_profile is None:
        logger.warning("No active profile; only workspace tool overrides apply. Run 'dws use PROFILE'.")

    layers = load_layers(ctx.paths, ctx.active_profile)
    specs = []
    if ctx.active_profile:
        specs = dotfiles.discover(ctx.paths.profile_dotfiles(ctx.active_profile), ctx.target_root)

    return resolve(
        layers,
        ctx.machine,
        require_checksum=ctx.require_checksum,
        dotfiles=specs,
    )
