"""
Integrity verification — digest downloaded artifacts and compare.

Checksums are written ``sha256:<hex>``. A mismatch fails the whole
install step; callers never install content that did not verify.
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from dws.core.errors import ChecksumMismatch, InvalidChecksum

logger = logging.getLogger(__name__)

ALGORITHM = "sha256"
_DIGEST_RE = re.compile(r"^sha256:([0-9a-fA-F]{64})$")
_CHUNK = 8192


def is_valid_checksum(value: str) -> bool:
    """Whether ``value`` is a well-formed ``sha256:<64 hex>`` string."""
    return bool(_DIGEST_RE.match(value.strip()))


def parse_checksum(value: str) -> str:
    """Normalize a declared checksum.

    Returns:
        ``sha256:<lowercase hex>``.

    Raises:
        InvalidChecksum: if the value is not ``sha256:<64 hex>``.
    """
    m = _DIGEST_RE.match(value.strip())
    if not m:
        raise InvalidChecksum("checksum must be formatted as `sha256:<64 hex characters>`")
    return f"{ALGORITHM}:{m.group(1).lower()}"


def compute_digest(content: bytes) -> str:
    """Digest in-memory content."""
    return f"{ALGORITHM}:{hashlib.sha256(content).hexdigest()}"


def compute_file_digest(path: Path) -> str:
    """Digest a file without reading it into memory at once."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return f"{ALGORITHM}:{h.hexdigest()}"


def verify(content: bytes, expected: str | None) -> str:
    """Check content against a declared checksum.

    Args:
        content: Downloaded bytes.
        expected: Declared ``sha256:<hex>``, or None when the manifest
            declares no checksum (the computed digest is still returned
            so it can be recorded).

    Returns:
        The computed digest.

    Raises:
        ChecksumMismatch: digest differs from ``expected``.
    """
    actual = compute_digest(content)
    _compare(actual, expected)
    return actual


def verify_file(path: Path, expected: str | None) -> str:
    """File variant of :func:`verify`."""
    actual = compute_file_digest(path)
    _compare(actual, expected)
    return actual


def _compare(actual: str, expected: str | None) -> None:
    if expected is None:
        return
    wanted = parse_checksum(expected)
    if actual != wanted:
        logger.warning("Checksum mismatch: expected %s, got %s", wanted, actual)
        raise ChecksumMismatch(expected=wanted, actual=actual)
