"""
Detection service — describe the machine dws is running on.

Read-only probes for OS, architecture, Linux distribution and hostname.
The result feeds manifest platform/host filters and asset ranking.

Pure reads — no side effects, no persistence.
"""

from __future__ import annotations

import logging
import os
import platform
import re
import socket
from pathlib import Path

from dws.core.models.machine import MachineDescriptor

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")

_OS_MAP = {
    "linux": "linux",
    "darwin": "macos",
    "windows": "windows",
    "freebsd": "freebsd",
}

_ARCH_MAP = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "i386": "i686",
    "i686": "i686",
    "armv7l": "armv7",
}

_HOST_ENV_VARS = ("HOSTNAME", "COMPUTERNAME", "HOST")


def detect_machine(os_release: Path = OS_RELEASE) -> MachineDescriptor:
    """Probe the running host.

    Returns:
        MachineDescriptor with canonical OS/arch tags, distro tags
        (Linux only) and the sanitized hostname.
    """
    system = platform.system().lower()
    os_tag = _OS_MAP.get(system, system or "unknown")
    machine = platform.machine().lower()
    arch_tag = _ARCH_MAP.get(machine, machine or "unknown")

    distro: tuple[str, ...] = ()
    if os_tag == "linux":
        distro = tuple(linux_distribution_tags(os_release))

    descriptor = MachineDescriptor(
        os=os_tag,
        arch=arch_tag,
        distro=distro,
        hostname=host_slug(),
    )
    logger.debug(
        "Detected machine os=%s arch=%s distro=%s host=%s",
        descriptor.os, descriptor.arch, ",".join(descriptor.distro), descriptor.hostname,
    )
    return descriptor


def linux_distribution_tags(path: Path = OS_RELEASE) -> list[str]:
    """Read ID and ID_LIKE from an os-release file.

    Returns:
        Lowercased tags, ID first. Empty if the file is missing.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        return []

    values: dict[str, str] = {}
    for line in content.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip().lower()] = value.strip().strip('"').strip("'").lower()

    tags: list[str] = []
    if values.get("id"):
        tags.append(values["id"])
    for item in re.split(r"[\s,]+", values.get("id_like", "")):
        if item and item not in tags:
            tags.append(item)
    return tags


def raw_hostname() -> str:
    """Best-effort hostname: socket first, then the usual env vars."""
    try:
        name = socket.gethostname()
    except OSError:
        name = ""
    if name.strip():
        return name
    for var in _HOST_ENV_VARS:
        value = os.environ.get(var, "")
        if value.strip():
            return value
    return "local"


def host_slug(raw: str | None = None) -> str:
    """Sanitize a hostname for use as a manifest filter value.

    ASCII alphanumerics are lowercased, every run of anything else
    collapses to a single ``-``, and leading/trailing dashes are trimmed.
    """
    if raw is None:
        raw = raw_hostname()
    slug = re.sub(r"[^a-z0-9]+", "-", raw.strip().lower()).strip("-")
    return slug or "local"
