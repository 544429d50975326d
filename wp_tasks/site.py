"""
Site-level tasks: installation detection, salts and directory permissions.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from .collectors import fetch_salts
from .common import TaskError, vlog
from .config import Config


VERSION_FILE = os.path.join("wp-includes", "version.php")
SALTS_FILE = ".salts.php"
WRITABLE_MODE = 0o777

WP_VERSION_RE = re.compile(r"""\$wp_version\s*=\s*['"]([^'"]+)['"]\s*;""")


class SiteError(TaskError):
    """Raised when the live site cannot be inspected or modified."""


def is_wordpress_installed(root: str | Path = ".") -> bool:
    """Check for the wp-includes/version.php sentinel."""
    return (Path(root) / VERSION_FILE).is_file()


def read_installed_version(root: str | Path = ".") -> str:
    """
    Read $wp_version from wp-includes/version.php.

    Raises:
        SiteError: If the file is missing or has no version assignment
    """
    path = Path(root) / VERSION_FILE
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise SiteError(f"Cannot read {path}: {e}", reason="version_unreadable") from e

    match = WP_VERSION_RE.search(text)
    if not match:
        raise SiteError(f"No $wp_version assignment in {path}", reason="version_unreadable")
    return match.group(1)


def write_atomic(path: Path, data: bytes) -> None:
    """Write to a temp file next to `path`, then rename it into place."""
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
        temp_path.replace(path)
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        raise SiteError(f"Failed to write {path}: {e}") from e


def generate_salts(
    root: str | Path = ".",
    config: Config | None = None,
    verbose: bool = False,
) -> Path:
    """
    Create a new set of salts and write them to .salts.php.

    The response body is written verbatim after an opening PHP tag.

    Returns:
        Path of the written file
    """
    config = config or Config()
    body = fetch_salts(config)

    path = Path(root) / SALTS_FILE
    write_atomic(path, b"<?php\n" + body)
    vlog(f"Wrote {len(body)} bytes of salts to {path}", verbose)
    return path


def fix_permissions(
    root: str | Path = ".",
    config: Config | None = None,
    verbose: bool = False,
) -> list[Path]:
    """
    Make sure every writable directory exists and is world-writable.

    Returns:
        Directories that were processed
    """
    config = config or Config()
    processed = []

    for folder in config.writable_dirs:
        path = Path(root) / folder
        try:
            path.mkdir(parents=True, exist_ok=True)
            os.chmod(path, WRITABLE_MODE)
        except OSError as e:
            raise SiteError(f"Cannot set permissions on {path}: {e}") from e
        vlog(f"Permissions set to {oct(WRITABLE_MODE)}: {path}", verbose)
        processed.append(path)

    return processed
