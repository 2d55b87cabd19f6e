"""Flatten — replaces symlinks in a directory tree with real copies of their targets."""

from __future__ import annotations

__version__ = "1.0.0"
