"""Link discovery for Flatten.

Produces recursive listing text for a directory tree and hands it to
:func:`flatten.listing.parse_listing`.  On Windows the listing comes from
``cmd /C dir /s``, which does not resolve any link and so stays fast on
network shares.  Elsewhere the same text format is rendered from
:func:`os.walk`.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import time
from datetime import datetime
from pathlib import Path

from flatten.errors import DiscoveryError
from flatten.listing import DIRECTORY_MARKER, LINK_MARKER, ListingResult, parse_listing

logger = logging.getLogger(__name__)

LISTING_SOURCES = ("auto", "dir", "walk")

_DIR_COMMAND = ["cmd", "/C", "dir /s"]
_DIR_LINK_MARKER = "<SYMLINKD>"


# ---------------------------------------------------------------------------
# Listing sources
# ---------------------------------------------------------------------------


def capture_dir_listing(root: Path) -> str:
    """Run ``dir /s`` inside *root* and return its decoded output.

    Raises:
        DiscoveryError: The command could not be started.
    """
    logger.debug("Running %s in %s", " ".join(_DIR_COMMAND), root)
    try:
        proc = subprocess.run(
            _DIR_COMMAND,
            cwd=str(root),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise DiscoveryError(f"Failed to run dir listing in {root}: {exc}") from exc

    if proc.returncode != 0:
        # dir exits non-zero when a subtree is unreadable but still lists the rest.
        stderr = proc.stderr.decode(errors="replace").strip()
        logger.warning("dir exited with code %d: %s", proc.returncode, stderr or "no output")
    return proc.stdout.decode(errors="replace")


def _entry_line(path: Path, marker: str, target: str) -> str:
    """Format one link entry the way ``dir`` prints it."""
    try:
        mtime = path.lstat().st_mtime
    except OSError:
        mtime = time.time()
    stamp = datetime.fromtimestamp(mtime).strftime("%m/%d/%Y  %I:%M %p")
    return f"{stamp}    {marker:<14} {path.name} [{target}]"


def render_listing(root: Path) -> str:
    """Walk *root* without following links and render ``dir /s`` style text.

    File links are tagged ``<SYMLINK>`` and directory links ``<SYMLINKD>``;
    regular files and directories are omitted since the parser ignores them.
    """
    lines: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames.sort()
        lines.append(f" {DIRECTORY_MARKER}{dirpath}")
        lines.append("")
        base = Path(dirpath)
        for name in dirnames:
            p = base / name
            if p.is_symlink():
                lines.append(_entry_line(p, _DIR_LINK_MARKER, os.readlink(p)))
        for name in sorted(filenames):
            p = base / name
            if p.is_symlink():
                lines.append(_entry_line(p, LINK_MARKER, os.readlink(p)))
        lines.append("")
    return "\n".join(lines)


def read_listing_file(path: Path) -> str:
    """Return pre-captured listing text from *path*.

    Raises:
        DiscoveryError: The file cannot be read.
    """
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise DiscoveryError(f"Failed to read listing file {path}: {exc}") from exc


def get_listing(root: Path, source: str = "auto") -> str:
    """Return listing text for *root* from the named *source*.

    ``auto`` uses ``dir`` on Windows and a directory walk elsewhere.
    """
    if source not in LISTING_SOURCES:
        raise ValueError(f"Unknown listing source: {source!r}")
    if source == "auto":
        source = "dir" if sys.platform == "win32" else "walk"
    if source == "dir":
        return capture_dir_listing(root)
    return render_listing(root)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_links(
    root: Path,
    skip_dirs: tuple[str, ...] | list[str] = (),
    source: str = "auto",
    listing_file: Path | None = None,
) -> ListingResult:
    """Build the link set for *root*.

    Raises:
        DiscoveryError: *root* is not a directory, the listing could not be
            produced, or the listing text is malformed.
    """
    if not root.is_dir():
        raise DiscoveryError(f"Directory does not exist: {root}")

    logger.info("Gathering symlinks recursively for %s", root)
    if listing_file is not None:
        text = read_listing_file(listing_file)
    else:
        text = get_listing(root, source)

    start = time.monotonic()
    result = parse_listing(text, skip_dirs)
    logger.debug("Listing parsed in %.1f ms", (time.monotonic() - start) * 1000)
    return result
