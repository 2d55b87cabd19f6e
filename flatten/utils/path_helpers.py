"""Path and size helpers."""

from __future__ import annotations

import os
from pathlib import Path

ONE_MB = 1024 * 1024


def temp_sibling(path: Path, suffix: str) -> Path:
    """Return *path* with *suffix* appended to its full name.

    The original extension stays visible, e.g. ``report.xlsx`` becomes
    ``report.xlsx.temp``, so a leftover copy still shows what it was.
    """
    return path.with_name(path.name + suffix)


def human_readable_size(size_bytes: int | float) -> str:
    """Convert a byte count to a human-readable string (e.g. "4.2 MB").

    Uses 1024-based units (KiB/MiB/GiB) but labels them KB/MB/GB for
    familiarity with everyday usage.
    """
    if size_bytes < 0:
        return "0 B"
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size_bytes < 1024.0:
            if unit == "B":
                return f"{int(size_bytes)} B"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def normalize_local_path(path: str | os.PathLike[str]) -> Path:
    """Resolve *path* to an absolute ``pathlib.Path`` on the local filesystem."""
    return Path(path).expanduser().resolve()
