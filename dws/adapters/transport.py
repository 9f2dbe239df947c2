"""
Transport helpers shared by backends — HTTP via urllib, subprocesses.

The single place where backends touch the network or spawn processes.
One deterministic attempt per call: no retries, no backoff.
"""

from __future__ import annotations

import hashlib
import json
import logging
import subprocess
import threading
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from dws import __version__
from dws.adapters.base import check_cancel
from dws.core.errors import BackendError

logger = logging.getLogger(__name__)

USER_AGENT = f"dws/{__version__}"
DEFAULT_TIMEOUT = 30
_CHUNK = 64 * 1024


def _request(url: str, headers: dict[str, str] | None = None) -> urllib.request.Request:
    merged = {"User-Agent": USER_AGENT}
    merged.update(headers or {})
    return urllib.request.Request(url, headers=merged)


def get_json(url: str, headers: dict[str, str] | None = None, timeout: int = DEFAULT_TIMEOUT) -> Any:
    """GET a JSON document.

    Raises:
        BackendError: HTTP error, network error or invalid JSON.
    """
    logger.debug("GET %s", url)
    try:
        with urllib.request.urlopen(_request(url, headers), timeout=timeout) as resp:
            return json.loads(resp.read())
    except urllib.error.HTTPError as e:
        raise BackendError(f"HTTP {e.code} from {url}: {e.reason}") from e
    except urllib.error.URLError as e:
        raise BackendError(f"Cannot reach {url}: {e.reason}") from e
    except (OSError, ValueError) as e:
        raise BackendError(f"Failed to fetch {url}: {e}") from e


def download(
    url: str,
    headers: dict[str, str] | None = None,
    cancel: threading.Event | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> tuple[bytes, str]:
    """Stream a URL into memory, checking for cancellation per chunk.

    Returns:
        (content, ``sha256:<hex>`` digest)
    """
    logger.debug("Downloading %s", url)
    h = hashlib.sha256()
    chunks: list[bytes] = []
    try:
        with urllib.request.urlopen(_request(url, headers), timeout=timeout) as resp:
            while True:
                check_cancel(cancel)
                chunk = resp.read(_CHUNK)
                if not chunk:
                    break
                h.update(chunk)
                chunks.append(chunk)
    except urllib.error.HTTPError as e:
        raise BackendError(f"HTTP {e.code} downloading {url}: {e.reason}") from e
    except urllib.error.URLError as e:
        raise BackendError(f"Cannot reach {url}: {e.reason}") from e
    except OSError as e:
        raise BackendError(f"Download of {url} failed: {e}") from e

    content = b"".join(chunks)
    logger.debug("Downloaded %d bytes from %s", len(content), url)
    return content, f"sha256:{h.hexdigest()}"


def run_command(
    cmd: list[str],
    *,
    env: dict[str, str] | None = None,
    cwd: Path | None = None,
    timeout: int = 600,
) -> str:
    """Run a command to completion.

    Returns:
        Captured stdout.

    Raises:
        BackendError: non-zero exit, timeout, or missing executable.
    """
    logger.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            env=env,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise BackendError(f"Command not found: {cmd[0]}") from e
    except subprocess.TimeoutExpired as e:
        raise BackendError(f"Command timed out after {timeout}s: {' '.join(cmd)}") from e

    if result.returncode != 0:
        stderr = result.stderr.strip()
        raise BackendError(
            f"Command failed (exit {result.returncode}): {' '.join(cmd)}"
            + (f"\n{stderr}" if stderr else "")
        )
    return result.stdout
