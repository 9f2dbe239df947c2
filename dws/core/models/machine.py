"""
Machine descriptor — the facts about this host that manifests filter on.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Aliases seen in release asset names, keyed by our canonical tag.
OS_ALIASES: dict[str, tuple[str, ...]] = {
    "linux": ("linux",),
    "macos": ("macos", "darwin", "apple", "osx"),
    "windows": ("windows", "win64", "win32", "msvc", "win"),
    "freebsd": ("freebsd",),
}

ARCH_ALIASES: dict[str, tuple[str, ...]] = {
    "x86_64": ("x86_64", "amd64", "x64"),
    "aarch64": ("aarch64", "arm64"),
    "i686": ("i686", "i386", "x86"),
    "armv7": ("armv7", "armhf"),
}


class MachineDescriptor(BaseModel):
    """OS/arch/distro tags plus the sanitized hostname."""

    model_config = ConfigDict(frozen=True)

    os: str
    arch: str
    distro: tuple[str, ...] = Field(default_factory=tuple)
    hostname: str = "local"

    @property
    def platform_tags(self) -> frozenset[str]:
        tags = {self.os, f"{self.os}-{self.arch}"}
        if self.os == "linux":
            tags.update(f"linux-{d}" for d in self.distro)
        if self.os == "macos":
            tags.add("darwin")
        return frozenset(tags)

    @property
    def os_aliases(self) -> tuple[str, ...]:
        return OS_ALIASES.get(self.os, (self.os,))

    @property
    def arch_aliases(self) -> tuple[str, ...]:
        return ARCH_ALIASES.get(self.arch, (self.arch,))
