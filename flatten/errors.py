"""Exception types raised by the discovery phase of a flatten run.

Per-link failures during processing are not raised; they are reported as
:class:`flatten.transfer.FlattenResult` values so one bad link never stops
the pool.
"""

from __future__ import annotations


class FlattenError(Exception):
    """Base class for errors that stop a flatten run."""


class DiscoveryError(FlattenError):
    """Raised when the link set cannot be built.

    Covers a missing root directory, a listing command that fails to run,
    and an unreadable listing file.
    """


class ListingError(DiscoveryError):
    """Raised when listing text cannot be resolved to link paths."""

    def __init__(self, message: str, line_number: int = 0) -> None:
        """Initialise with the 1-based *line_number* of the offending line."""
        super().__init__(message)
        self.line_number = line_number
