"""
Manifest resolver — stack layers into the desired state for this machine.

Layers are applied in ascending precedence. For every tool name a layer
declares (and whose platform/host filters admit this machine), the
layer's entry replaces whatever a lower layer said, as a whole: fields
are never merged across layers. An entry whose filters do not match
contributes nothing, so the name falls through to the nearest lower
layer that does match.

Every layer is validated before anything is resolved. Validation
errors are always fatal to the whole resolution.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from dws.core.errors import (
    ChecksumRequired,
    DuplicateInLayer,
    InvalidChecksum,
    InvalidFilter,
    ManifestError,
    MissingRequiredField,
)
from dws.core.models.machine import MachineDescriptor
from dws.core.models.tool import (
    ConfigSymlinkSpec,
    ExtraKind,
    InstallerKind,
    ManifestLayer,
    ResolvedState,
    ToolDefinition,
)
from dws.core.services import integrity
from dws.core.services.archive import COMPLETION_DIRS

logger = logging.getLogger(__name__)

# Installers whose downloads can be pinned to a digest.
CHECKSUM_KINDS = frozenset({InstallerKind.GITHUB, InstallerKind.GITLAB, InstallerKind.SCRIPT})

# Installers that must say which executables they provide.
BIN_REQUIRED_KINDS = frozenset({InstallerKind.GITHUB, InstallerKind.GITLAB, InstallerKind.SCRIPT})


@dataclass(frozen=True)
class ManifestIssue:
    """One validation problem, for reporting rather than raising."""

    source: str
    tool: str | None
    message: str
    kind: str = "ManifestError"

    @classmethod
    def from_error(cls, error: ManifestError, source: Path | None = None) -> ManifestIssue:
        where = error.source or source
        return cls(
            source=str(where) if where else "",
            tool=error.tool,
            message=error.message,
            kind=type(error).__name__,
        )

    def to_dict(self) -> dict:
        return {"source": self.source, "tool": self.tool, "message": self.message, "kind": self.kind}


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_definition(
    tool: ToolDefinition,
    *,
    source: Path | None = None,
    require_checksum: bool = False,
) -> list[ManifestError]:
    """Check one tool entry in isolation.

    Returns:
        Every problem found, in a stable order. Empty if valid.
    """
    issues: list[ManifestError] = []

    def missing(message: str) -> None:
        issues.append(MissingRequiredField(message, tool=tool.name, source=source))

    if tool.installer.is_forge_release:
        if _blank(tool.project):
            missing("field `project` is required for release installers")
        if not tool.asset_filters:
            missing("at least one `asset_filter` regex must be defined")
    elif tool.installer == InstallerKind.FLATPAK:
        if _blank(tool.project):
            missing("field `project` is required for flatpak installers")
    elif tool.installer == InstallerKind.SCRIPT:
        if _blank(tool.url):
            missing("field `url` is required for script installers")
        if _blank(tool.shell):
            missing("field `shell` is required for script installers")
    elif tool.installer == InstallerKind.DMG:
        if _blank(tool.url):
            missing("field `url` is required for dmg installers")

    if tool.checksum is not None:
        if not integrity.is_valid_checksum(tool.checksum):
            issues.append(InvalidChecksum(
                "checksum must be formatted as `sha256:<64 hex characters>`",
                tool=tool.name, source=source,
            ))
    elif require_checksum and tool.installer in CHECKSUM_KINDS:
        issues.append(ChecksumRequired(
            "checksum is required for this installer", tool=tool.name, source=source,
        ))

    for pattern in tool.asset_filters:
        try:
            re.compile(pattern)
        except re.error as e:
            issues.append(InvalidFilter(
                f"invalid asset_filter regex `{pattern}`: {e}", tool=tool.name, source=source,
            ))

    if not tool.bin and tool.installer in BIN_REQUIRED_KINDS:
        missing("declare at least one `bin` entry")
    for idx, binary in enumerate(tool.bin):
        if _blank(binary.source):
            missing(f"bin entry #{idx} must specify a non-empty `source`")
        if binary.link is not None and _blank(binary.link):
            missing(f"bin entry #{idx} has an empty `link` value")

    for idx, extra in enumerate(tool.extras):
        if _blank(extra.source):
            missing(f"extras entry #{idx} must specify a non-empty `source`")
        if extra.target is not None and _blank(extra.target):
            missing(f"extras entry #{idx} has an empty `target` value")
        if extra.kind == ExtraKind.COMPLETION and not extra.target:
            if _blank(extra.shell):
                missing(f"extras entry #{idx} (kind=completion) requires a `shell` value")
            elif extra.shell.strip().lower() not in COMPLETION_DIRS:
                issues.append(ManifestError(
                    f"extras entry #{idx} has unsupported completion shell '{extra.shell}'",
                    tool=tool.name, source=source,
                ))

    return issues


def validate_layer(layer: ManifestLayer, *, require_checksum: bool = False) -> list[ManifestError]:
    """Check a whole layer: duplicate names first, then each entry."""
    issues: list[ManifestError] = []
    seen: set[str] = set()
    for tool in layer.tools:
        if tool.name in seen:
            issues.append(DuplicateInLayer(
                f"tool declared more than once in layer '{layer.name}'",
                tool=tool.name, source=layer.source,
            ))
        seen.add(tool.name)
    for tool in layer.tools:
        issues.extend(validate_definition(
            tool, source=layer.source, require_checksum=require_checksum,
        ))
    return issues


def resolve(
    layers: list[ManifestLayer],
    machine: MachineDescriptor,
    *,
    require_checksum: bool = False,
    dotfiles: list[ConfigSymlinkSpec] | None = None,
) -> ResolvedState:
    """Compute the desired state for ``machine``.

    Args:
        layers: Manifest layers in any order; precedence decides.
        machine: Host facts the platform/host filters are matched against.
        require_checksum: Refuse forge/script tools without a checksum.
        dotfiles: Dotfile mappings to carry into the resolved state.

    Returns:
        ResolvedState with one definition per tool name.

    Raises:
        ManifestError: the first validation problem in any layer.
    """
    ordered = sorted(layers, key=lambda layer: layer.precedence)

    for layer in ordered:
        issues = validate_layer(layer, require_checksum=require_checksum)
        if issues:
            logger.debug("Layer '%s' has %d manifest issue(s)", layer.name, len(issues))
            raise issues[0]

    tags = machine.platform_tags
    state = ResolvedState(dotfiles=list(dotfiles or []))
    for layer in ordered:
        for tool in layer.tools:
            if not tool.applies_to(tags, machine.hostname):
                logger.debug(
                    "Skipping %s from layer '%s': platform/host filter does not match",
                    tool.name, layer.name,
                )
                continue
            if tool.name in state.tools:
                logger.debug(
                    "Layer '%s' overrides %s (was from '%s')",
                    layer.name, tool.name, state.origins[tool.name],
                )
            state.tools[tool.name] = tool
            state.origins[tool.name] = layer.name

    logger.info("Resolved %d tool(s) from %d layer(s)", len(state), len(ordered))
    return state
