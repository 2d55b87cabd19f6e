"""Parser for recursive directory listings.

Turns the text of a ``dir /s`` style listing into the ordered set of link
paths to flatten.  Enumerating with ``dir`` is far quicker than walking the
tree from Python on a network share, because it never resolves the links.

The format relied on is small::

     Directory of C:\\Projects\\data

    01/02/2024  10:15 AM    <SYMLINK>      report.xlsx [\\\\server\\share\\report.xlsx]
    01/02/2024  10:15 AM    <DIR>          archive

Only the directory headers and ``<SYMLINK>`` entries matter; everything
else is ignored.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from flatten.errors import ListingError

logger = logging.getLogger(__name__)

DIRECTORY_MARKER = "Directory of "
LINK_MARKER = "<SYMLINK>"

# Trailing " [target]" annotation that dir prints after a link name.  The
# target may itself contain brackets; the first " [" followed by a path
# prefix opens the annotation.
_TARGET_ANNOTATION = re.compile(r"\s+\[(?=\\\\|[A-Za-z]:[\\/]|/|\.).*\]\s*$")
# Fallback for bare relative targets: the last bracket group on the line.
_BARE_TARGET_ANNOTATION = re.compile(r"\s+\[[^\[\]]*\]\s*$")


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ListingResult:
    """Outcome of parsing one listing."""

    links: tuple[str, ...]
    num_dirs: int
    num_skipped: int = 0

    def __len__(self) -> int:
        return len(self.links)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _join(directory: str, name: str) -> str:
    """Join *name* onto *directory* using the separator the directory uses."""
    if directory.endswith(("\\", "/")):
        return directory + name
    sep = "\\" if "\\" in directory or (len(directory) >= 2 and directory[1] == ":") else "/"
    return f"{directory}{sep}{name}"


def strip_target_annotation(entry: str) -> str:
    """Remove a trailing ``[target]`` annotation from a link entry name."""
    stripped, count = _TARGET_ANNOTATION.subn("", entry)
    if not count:
        stripped = _BARE_TARGET_ANNOTATION.sub("", entry)
    return stripped.rstrip()


def is_skipped(directory: str, skip_dirs: Iterable[str]) -> bool:
    """Return True if *directory* contains any of the *skip_dirs* substrings."""
    return any(s and s in directory for s in skip_dirs)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def parse_listing(text: str, skip_dirs: Iterable[str] = ()) -> ListingResult:
    """Parse listing *text* into a :class:`ListingResult`.

    Args:
        text: Full output of a recursive directory listing.
        skip_dirs: Substrings; links inside any directory whose path
            contains one of them are left out.

    Raises:
        ListingError: A link entry appears before any directory header,
            so its path cannot be formed.
    """
    skip_set = frozenset(skip_dirs)
    links: list[str] = []
    current_dir = ""
    num_dirs = 0
    num_skipped = 0
    skip_directory = False

    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip("\r")

        index = line.find(DIRECTORY_MARKER)
        if index != -1:
            current_dir = line[index + len(DIRECTORY_MARKER):].strip()
            num_dirs += 1
            skip_directory = is_skipped(_join(current_dir, ""), skip_set)
            if skip_directory:
                logger.debug("Skipping directory %s", current_dir)
            continue

        index = line.find(LINK_MARKER)
        if index == -1:
            continue

        if not current_dir:
            raise ListingError(
                f"Link entry on line {line_number} appears before any directory header",
                line_number=line_number,
            )
        if skip_directory:
            num_skipped += 1
            continue

        name = strip_target_annotation(line[index + len(LINK_MARKER):].lstrip())
        if not name:
            raise ListingError(
                f"Link entry on line {line_number} has no file name",
                line_number=line_number,
            )
        links.append(_join(current_dir, name))

    logger.debug(
        "Parsed listing: %d links in %d directories (%d skipped)",
        len(links),
        num_dirs,
        num_skipped,
    )
    return ListingResult(links=tuple(links), num_dirs=num_dirs, num_skipped=num_skipped)
