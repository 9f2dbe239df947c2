"""
Check use case — validate every manifest without touching the machine.

Unlike a sync, which stops at the first manifest problem, a check
collects every problem across all profiles and the workspace file so
they can be fixed in one go.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from dws.core.config.loader import (
    PROFILE_PRECEDENCE,
    WORKSPACE_PRECEDENCE,
    list_profiles,
    load_yaml,
    parse_tools,
)
from dws.core.context import WorkspaceContext
from dws.core.errors import ConfigError, ManifestError
from dws.core.models.tool import ManifestLayer
from dws.core.services.manifest_resolver import ManifestIssue, validate_layer

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Validation problems per manifest file."""

    checked: list[str] = field(default_factory=list)
    tool_count: int = 0
    issues: list[ManifestIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "checked": self.checked,
            "tool_count": self.tool_count,
            "issues": [i.to_dict() for i in self.issues],
        }


def _check_file(
    result: CheckResult,
    name: str,
    path: Path,
    precedence: int,
    require_checksum: bool,
) -> None:
    result.checked.append(str(path))
    try:
        data = load_yaml(path)
    except ManifestError as e:
        result.issues.append(ManifestIssue.from_error(e, path))
        return
    except ConfigError as e:
        result.issues.append(ManifestIssue(source=str(path), tool=None, message=str(e), kind=type(e).__name__))
        return

    errors: list[ManifestError] = []
    tools = parse_tools(data.get("tools"), path, issues=errors)
    layer = ManifestLayer(name=name, precedence=precedence, tools=tools, source=path)
    errors.extend(validate_layer(layer, require_checksum=require_checksum))

    result.tool_count += len(tools)
    result.issues.extend(ManifestIssue.from_error(e, path) for e in errors)


def check_manifests(ctx: WorkspaceContext, profiles: list[str] | None = None) -> CheckResult:
    """Validate the workspace file and every (or the named) profile manifest.

    Platform and host filters are ignored: a manifest is checked as a
    whole, not just the entries that apply to this machine.
    """
    result = CheckResult()
    paths = ctx.paths

    for profile in profiles if profiles is not None else list_profiles(paths):
        manifest = paths.profile_manifest(profile)
        if not manifest.is_file():
            result.issues.append(ManifestIssue(
                source=str(manifest), tool=None,
                message=f"profile '{profile}' has no manifest", kind="MissingManifest",
            ))
            continue
        _check_file(result, f"profile:{profile}", manifest, PROFILE_PRECEDENCE, ctx.require_checksum)

    if paths.config_file.is_file():
        _check_file(result, "workspace", paths.config_file, WORKSPACE_PRECEDENCE, ctx.require_checksum)

    logger.info("Checked %d file(s): %d tool(s), %d issue(s)",
                len(result.checked), result.tool_count, len(result.issues))
    return result
