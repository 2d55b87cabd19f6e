"""Link flattening for Flatten.

Replaces one link with a real copy of the data it points to:

- Copy through the link into a ``<name>.temp`` sibling
- Clear a read-only mode so the sibling can be renamed
- Atomic rename over the link (``os.replace``)
- Restore the read-only mode on the now-real file

Outcomes are returned as :class:`FlattenResult` values, never raised, so
the worker pool can keep going after any single failure.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import stat
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Iterable

from flatten.utils.path_helpers import temp_sibling

logger = logging.getLogger(__name__)

DEFAULT_TEMP_SUFFIX = ".temp"

# Windows system error codes seen when a VPN or SMB session drops mid-run.
ERROR_BAD_NETPATH = 53   # The network path was not found.
ERROR_BAD_NET_NAME = 67  # The network name cannot be found.
DEFAULT_TRANSIENT_WINERRORS = (ERROR_BAD_NETPATH, ERROR_BAD_NET_NAME)

TransientPredicate = Callable[[OSError], bool]

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FlattenStatus(Enum):
    """Verdict for one link."""

    SUCCESS = auto()
    RETRYABLE = auto()
    FATAL = auto()
    CANCELLED = auto()


class ErrorKind(Enum):
    """Which step failed."""

    TRANSIENT_COPY = auto()  # copy failed with a transient network error
    FATAL_COPY = auto()      # copy failed for any other reason
    RENAME = auto()          # copy succeeded, replace failed; data left at temp_path


# ---------------------------------------------------------------------------
# FlattenResult
# ---------------------------------------------------------------------------


@dataclass
class FlattenResult:
    """Outcome of flattening one link."""

    path: str
    status: FlattenStatus
    bytes_copied: int = 0
    error: str | None = None
    error_kind: ErrorKind | None = None
    temp_path: str | None = None
    warning: str | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.status == FlattenStatus.SUCCESS

    @property
    def orphaned(self) -> bool:
        """True when copied data sits at ``temp_path`` instead of ``path``."""
        return self.error_kind == ErrorKind.RENAME


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def make_transient_predicate(
    winerror_codes: Iterable[int] = DEFAULT_TRANSIENT_WINERRORS,
    errno_codes: Iterable[int] = (),
) -> TransientPredicate:
    """Build a predicate deciding whether a copy error is worth retrying.

    An error is transient if its Windows error code is in *winerror_codes*
    or its ``errno`` is in *errno_codes*.  Codes may be given as numeric
    strings, as they sometimes are in hand-edited config files.

    Raises:
        ValueError: A code string is not an integer.
        TypeError: A code is neither a number nor a string.
    """
    winerrors = frozenset(int(code) for code in winerror_codes)
    errnos = frozenset(int(code) for code in errno_codes)

    def is_transient(exc: OSError) -> bool:
        winerror = getattr(exc, "winerror", None)
        if winerror is not None and winerror in winerrors:
            return True
        return exc.errno is not None and exc.errno in errnos

    return is_transient


def _describe(exc: OSError) -> str:
    code = getattr(exc, "winerror", None) or exc.errno
    name = errno.errorcode.get(exc.errno, "") if exc.errno else ""
    if code and name:
        return f"{exc} [{name}]"
    return str(exc)


# ---------------------------------------------------------------------------
# LinkFlattener
# ---------------------------------------------------------------------------


class LinkFlattener:
    """Turns one link into a real file holding its target's data.

    Stateless apart from its settings, so a single instance is shared by
    every worker thread.
    """

    def __init__(
        self,
        temp_suffix: str = DEFAULT_TEMP_SUFFIX,
        is_transient: TransientPredicate | None = None,
    ) -> None:
        """Initialise the flattener.

        Args:
            temp_suffix: Appended to the link name for the copy target.
            is_transient: Classifies copy errors; defaults to the Windows
                "network path/name not found" codes.
        """
        if not temp_suffix:
            raise ValueError("temp_suffix must not be empty")
        self.temp_suffix = temp_suffix
        self.is_transient = is_transient or make_transient_predicate()

    def flatten(self, path: str | os.PathLike[str]) -> FlattenResult:
        """Replace the link at *path* with a copy of its target."""
        link = Path(path)
        tmp = temp_sibling(link, self.temp_suffix)

        # 1. Copy through the link
        try:
            shutil.copy2(link, tmp)
            st = tmp.stat()
        except OSError as exc:
            self._remove_quietly(tmp)
            if self.is_transient(exc):
                logger.warning("Network error copying %s: %s", link, _describe(exc))
                return FlattenResult(
                    path=str(link),
                    status=FlattenStatus.RETRYABLE,
                    error=_describe(exc),
                    error_kind=ErrorKind.TRANSIENT_COPY,
                )
            logger.error("Failed to copy %s: %s", link, _describe(exc))
            return FlattenResult(
                path=str(link),
                status=FlattenStatus.FATAL,
                error=_describe(exc),
                error_kind=ErrorKind.FATAL_COPY,
            )

        # 2. Clear read-only so the rename is allowed
        size = st.st_size
        mode = stat.S_IMODE(st.st_mode)
        read_only = not mode & stat.S_IWUSR
        if read_only:
            try:
                os.chmod(tmp, mode | stat.S_IWUSR)
            except OSError as exc:
                logger.debug("Could not clear read-only on %s: %s", tmp, exc)

        # 3. Atomic replace
        try:
            os.replace(tmp, link)
        except OSError as exc:
            logger.error(
                "Failed to replace %s; copied data left at %s: %s",
                link,
                tmp,
                _describe(exc),
            )
            return FlattenResult(
                path=str(link),
                status=FlattenStatus.FATAL,
                bytes_copied=size,
                error=_describe(exc),
                error_kind=ErrorKind.RENAME,
                temp_path=str(tmp),
            )

        # 4. Restore read-only
        warning = None
        if read_only:
            try:
                os.chmod(link, mode)
            except OSError as exc:
                warning = f"Could not restore read-only flag: {exc}"
                logger.warning("%s (%s)", warning, link)

        return FlattenResult(
            path=str(link),
            status=FlattenStatus.SUCCESS,
            bytes_copied=size,
            warning=warning,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _remove_quietly(tmp: Path) -> None:
        """Delete a partial temp file, ignoring a missing file."""
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove partial copy %s: %s", tmp, exc)
