"""Flatten — entry point.

Equivalent to the ``flatten`` console script::

    python main.py D:\\Projects --skip-dir .git node_modules
"""

from __future__ import annotations

from flatten.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
