"""Interactive confirmation before any link is replaced."""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

AFFIRMATIVE = "y"


def is_affirmative(answer: str) -> bool:
    """Return True if *answer* starts with ``y`` (case-insensitive)."""
    return answer.strip().lower().startswith(AFFIRMATIVE)


def confirm_flatten(
    found: int,
    num_dirs: int,
    read_line: Callable[[str], str] = input,
) -> bool:
    """Ask whether to flatten *found* links; anything but yes declines.

    A failed read (closed stdin, Ctrl-D) counts as a decline.
    """
    prompt = (
        f"Found {found} symlink{'s' if found != 1 else ''} "
        f"in {num_dirs} director{'ies' if num_dirs != 1 else 'y'}.\n"
        "Do you wish to continue? (y/n) "
    )
    try:
        answer = read_line(prompt)
    except (EOFError, OSError) as exc:
        logger.debug("Confirmation read failed: %r", exc)
        return False
    return is_affirmative(answer)
