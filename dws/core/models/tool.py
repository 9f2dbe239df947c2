"""
Tool models — what a manifest declares.

A ToolDefinition is one tool as written in one manifest layer. Layers
are stacked by the manifest resolver; a higher layer replaces a lower
layer's entry of the same name in full, so every field here carries
its own default and nothing is ever inherited across layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

LATEST = "latest"


class InstallerKind(StrEnum):
    """Installer backends a tool can declare."""

    GITHUB = "github"
    GITLAB = "gitlab"
    SCRIPT = "script"
    DMG = "dmg"
    FLATPAK = "flatpak"

    @property
    def is_forge_release(self) -> bool:
        """Whether the tool is fetched from a forge's release assets."""
        return self in (InstallerKind.GITHUB, InstallerKind.GITLAB)


class ExtraKind(StrEnum):
    MAN = "man"
    COMPLETION = "completion"
    OTHER = "other"


class VersionSpec(BaseModel):
    """Either a pinned tag or "whatever the backend calls latest"."""

    model_config = ConfigDict(frozen=True)

    pinned: str | None = None

    @property
    def is_pinned(self) -> bool:
        return self.pinned is not None

    @property
    def is_latest(self) -> bool:
        return self.pinned is None

    @classmethod
    def parse(cls, value: Any) -> VersionSpec:
        if value is None:
            return cls()
        if isinstance(value, VersionSpec):
            return value
        text = str(value).strip()
        if not text or text.lower() == LATEST:
            return cls()
        return cls(pinned=text)

    def __str__(self) -> str:
        return self.pinned if self.pinned is not None else LATEST


class ToolBinary(BaseModel):
    """An executable inside the artifact, optionally linked under another name."""

    model_config = ConfigDict(extra="forbid")

    source: str
    link: str | None = None

    @property
    def link_name(self) -> str:
        return self.link or PurePosixPath(self.source).name


class ToolExtra(BaseModel):
    """A man page, shell completion or arbitrary file shipped with a tool."""

    model_config = ConfigDict(extra="forbid")

    source: str
    kind: ExtraKind = ExtraKind.OTHER
    shell: str | None = None
    target: str | None = None


class ToolDefinition(BaseModel):
    """One declared tool, exactly as a single layer states it."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    installer: InstallerKind
    project: str | None = None
    version: VersionSpec = Field(default_factory=VersionSpec)
    url: str | None = None
    shell: str | None = None
    app: str | None = None
    asset_filters: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("asset_filters", "asset_filter"),
    )
    checksum: str | None = None
    bin: list[ToolBinary] = Field(default_factory=list)
    extras: list[ToolExtra] = Field(default_factory=list)
    self_update: bool = False
    platform: frozenset[str] = Field(default_factory=frozenset)
    hosts: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("version", mode="before")
    @classmethod
    def _parse_version(cls, value: Any) -> VersionSpec:
        return VersionSpec.parse(value)

    @field_validator("asset_filters", mode="before")
    @classmethod
    def _single_filter(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("bin", mode="before")
    @classmethod
    def _bare_binaries(cls, value: Any) -> Any:
        # ``bin: [rg]`` is shorthand for ``bin: [{source: rg}]``
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [{"source": v} if isinstance(v, str) else v for v in value]
        return value

    @field_validator("platform", "hosts", mode="before")
    @classmethod
    def _normalize_filters(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(normalize_filter(v) for v in value if str(v).strip())

    def applies_to(self, platform_tags: set[str] | frozenset[str], host: str | None) -> bool:
        """Whether this entry's platform/host filters admit the machine."""
        if self.platform and not (self.platform & set(platform_tags)):
            return False
        if self.hosts and (host is None or host not in self.hosts):
            return False
        return True


def normalize_filter(value: Any) -> str:
    return str(value).strip().lower()


class ConfigSymlinkSpec(BaseModel):
    """A dotfile mapping: ``target`` should be a symlink to ``source``."""

    model_config = ConfigDict(frozen=True)

    source: Path
    target: Path


@dataclass
class ManifestLayer:
    """An ordered, named source of tool declarations.

    ``tools`` keeps declaration order and may contain the same name
    twice; the resolver rejects that rather than guessing.
    """

    name: str
    precedence: int
    tools: list[ToolDefinition] = field(default_factory=list)
    source: Path | None = None


@dataclass
class ResolvedState:
    """Desired state for this machine: one definition per tool, plus dotfiles."""

    tools: dict[str, ToolDefinition] = field(default_factory=dict)
    origins: dict[str, str] = field(default_factory=dict)
    dotfiles: list[ConfigSymlinkSpec] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tools)

    def get(self, name: str) -> ToolDefinition | None:
        return self.tools.get(name)
