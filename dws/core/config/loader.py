"""
Configuration loader — reads config.yml and profile manifests.

Two YAML files feed the engine:

    config.yml  (workspace)  active_profile, settings, override ``tools:``
    dws.yml     (profile)    ``tools:`` declarations of one profile

YAML is parsed with a safe loader that refuses duplicate mapping keys,
since PyYAML would otherwise silently keep the last one. A repeated
tool name is a manifest error; any other repeated key is a config error.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from dws.core.context import WorkspaceContext, WorkspacePaths
from dws.core.errors import ConfigError, DuplicateInLayer, ManifestError, MissingRequiredField
from dws.core.models.machine import MachineDescriptor
from dws.core.models.tool import ManifestLayer, ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"
PROFILE_PRECEDENCE = 0
WORKSPACE_PRECEDENCE = 100


class Settings(BaseModel):
    """Workspace-wide knobs (``settings:`` in config.yml)."""

    jobs: int | None = Field(default=None, ge=1)
    lease_timeout: float = Field(default=5.0, gt=0)
    require_checksum: bool = False
    dotfiles_target: str | None = None


class WorkspaceConfig(BaseModel):
    """Parsed config.yml, minus the tool declarations."""

    active_profile: str | None = None
    settings: Settings = Field(default_factory=Settings)


# ── YAML ────────────────────────────────────────────────────────


class _DuplicateKey(yaml.constructor.ConstructorError):
    def __init__(self, key: str, mark: yaml.Mark | None, is_tool: bool = False):
        super().__init__(None, None, f"duplicate key '{key}'", mark)
        self.key = key
        self.is_tool = is_tool
        self.line = mark.line + 1 if mark is not None else None


class _UniqueKeyLoader(yaml.SafeLoader):
    _tools_node: yaml.Node | None = None

    def construct_document(self, node):
        # Keys directly under the top-level ``tools:`` are tool names.
        self._tools_node = None
        if isinstance(node, yaml.MappingNode):
            for key_node, value_node in node.value:
                if isinstance(key_node, yaml.ScalarNode) and key_node.value == "tools":
                    self._tools_node = value_node
        return super().construct_document(node)

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            self.flatten_mapping(node)
        seen: set[Any] = set()
        for key_node, _value_node in node.value:
            key = self.construct_object(key_node, deep=deep)
            if isinstance(key, list | dict):
                continue
            if key in seen:
                raise _DuplicateKey(str(key), key_node.start_mark, is_tool=node is self._tools_node)
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def load_yaml(path: Path) -> dict[str, Any]:
    """Parse a YAML mapping file.

    Returns:
        The mapping, or ``{}`` for a missing or empty file.

    Raises:
        DuplicateInLayer: ``tools:`` names the same tool twice.
        ConfigError: unreadable, invalid YAML, a repeated key anywhere
            else, or not a mapping.
    """
    if not path.is_file():
        return {}

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.load(raw, Loader=_UniqueKeyLoader)
    except _DuplicateKey as e:
        where = f" (line {e.line})" if e.line else ""
        if e.is_tool:
            raise DuplicateInLayer(f"duplicate key '{e.key}'{where}", tool=e.key, source=path) from e
        raise ConfigError(f"Duplicate key '{e.key}'{where} in {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg')}" if loc else str(item.get("msg")))
    return "; ".join(parts)


# ── Tools ───────────────────────────────────────────────────────


def parse_tool(name: str, raw: Any, source: Path | None = None) -> ToolDefinition:
    """Validate one raw tool declaration.

    Raises:
        MissingRequiredField: no ``installer``.
        ManifestError: any other schema problem.
    """
    if not isinstance(raw, dict):
        raise ManifestError("tool declaration must be a mapping", tool=name, source=source)
    if not raw.get("installer"):
        raise MissingRequiredField("field `installer` is required", tool=name, source=source)
    try:
        return ToolDefinition.model_validate({**raw, "name": name})
    except ValidationError as e:
        raise ManifestError(_validation_message(e), tool=name, source=source) from e


def parse_tools(
    raw: Any,
    source: Path | None = None,
    issues: list[ManifestError] | None = None,
) -> list[ToolDefinition]:
    """Turn a ``tools:`` value into ordered definitions.

    Accepts a mapping of name → declaration, or a list of declarations
    each carrying a ``name`` key (the list form can repeat a name; the
    resolver rejects that).

    Args:
        raw: The ``tools:`` value.
        source: File it came from, for messages.
        issues: When given, problems are appended here and parsing
            continues; otherwise the first problem is raised.
    """
    if raw is None:
        return []

    if isinstance(raw, dict):
        items = [(str(name), decl) for name, decl in raw.items()]
    elif isinstance(raw, list):
        items = []
        for idx, decl in enumerate(raw):
            name = decl.get("name") if isinstance(decl, dict) else None
            if not name:
                err = MissingRequiredField(f"tools entry #{idx} needs a `name`", source=source)
                if issues is None:
                    raise err
                issues.append(err)
                continue
            items.append((str(name), {k: v for k, v in decl.items() if k != "name"}))
    else:
        err = ManifestError("`tools` must be a mapping or a list", source=source)
        if issues is None:
            raise err
        issues.append(err)
        return []

    tools: list[ToolDefinition] = []
    for name, decl in items:
        try:
            tools.append(parse_tool(name, decl, source))
        except ManifestError as e:
            if issues is None:
                raise
            issues.append(e)
    return tools


# ── Workspace ───────────────────────────────────────────────────


def load_workspace_config(paths: WorkspacePaths) -> WorkspaceConfig:
    """Read config.yml (defaults if absent)."""
    data = load_yaml(paths.config_file)
    try:
        config = WorkspaceConfig.model_validate(
            {k: v for k, v in data.items() if k in ("active_profile", "settings")}
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid workspace configuration in {paths.config_file}: {_validation_message(e)}") from e
    logger.debug("Workspace config: profile=%s settings=%s", config.active_profile, config.settings)
    return config


def list_profiles(paths: WorkspacePaths) -> list[str]:
    if not paths.profiles_dir.is_dir():
        return []
    return sorted(p.name for p in paths.profiles_dir.iterdir() if p.is_dir() and not p.name.startswith("."))


def active_profile(paths: WorkspacePaths, config: WorkspaceConfig) -> str | None:
    """The configured profile, else ``default`` if it exists."""
    if config.active_profile:
        return config.active_profile
    if paths.profile_dir(DEFAULT_PROFILE).is_dir():
        return DEFAULT_PROFILE
    return None


def set_active_profile(paths: WorkspacePaths, name: str) -> None:
    """Persist ``active_profile`` in config.yml, keeping other keys.

    Raises:
        ConfigError: the profile does not exist.
    """
    if not paths.profile_dir(name).is_dir():
        available = ", ".join(list_profiles(paths)) or "none"
        raise ConfigError(f"Profile '{name}' not found (available: {available})")

    data = load_yaml(paths.config_file)
    data["active_profile"] = name
    paths.config_dir.mkdir(parents=True, exist_ok=True)
    paths.config_file.write_text(
        yaml.safe_dump(data, default_flow_style=False, sort_keys=False), encoding="utf-8",
    )
    logger.info("Active profile set to '%s'", name)


def load_layers(paths: WorkspacePaths, profile: str | None) -> list[ManifestLayer]:
    """Profile manifest (lower) and workspace override (higher) layers."""
    layers: list[ManifestLayer] = []

    if profile:
        manifest = paths.profile_manifest(profile)
        data = load_yaml(manifest)
        layers.append(ManifestLayer(
            name=f"profile:{profile}",
            precedence=PROFILE_PRECEDENCE,
            tools=parse_tools(data.get("tools"), manifest),
            source=manifest,
        ))

    data = load_yaml(paths.config_file)
    layers.append(ManifestLayer(
        name="workspace",
        precedence=WORKSPACE_PRECEDENCE,
        tools=parse_tools(data.get("tools"), paths.config_file),
        source=paths.config_file,
    ))
    return layers


def build_context(
    paths: WorkspacePaths | None = None,
    machine: MachineDescriptor | None = None,
    jobs: int | None = None,
) -> WorkspaceContext:
    """Assemble a WorkspaceContext from the environment and config.yml.

    Precedence for the worker count: explicit ``jobs`` > ``DWS_JOBS`` >
    ``settings.jobs`` > CPU-based default.
    """
    from dws.core.services.detection import detect_machine

    paths = paths or WorkspacePaths.from_env()
    config = load_workspace_config(paths)
    settings = config.settings

    env_jobs = os.environ.get("DWS_JOBS", "").strip()
    if jobs is None and env_jobs:
        try:
            jobs = int(env_jobs)
        except ValueError as e:
            raise ConfigError(f"DWS_JOBS must be an integer, got '{env_jobs}'") from e

    target = None
    if settings.dotfiles_target:
        target = Path(os.path.expandvars(os.path.expanduser(settings.dotfiles_target)))

    return WorkspaceContext(
        paths=paths,
        machine=machine or detect_machine(),
        active_profile=active_profile(paths, config),
        jobs=jobs or settings.jobs,
        lease_timeout=settings.lease_timeout,
        require_checksum=settings.require_checksum,
        dotfiles_target=target,
    )
