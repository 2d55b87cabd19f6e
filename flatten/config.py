"""Configuration management for Flatten.

Settings are stored as JSON in ``~/.flatten/config.json``.  Command-line
flags override them for a single run.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_CONFIG: dict[str, Any] = {
    "workers": 1,
    "retry_limit": 3,
    "retry_delay": 10,
    "temp_suffix": ".temp",
    "transient_winerror_codes": [53, 67],
    "transient_errno_codes": [],
    "listing_source": "auto",
    "skip_dirs": [],
    "log_level": "INFO",
}

# ---------------------------------------------------------------------------
# ConfigManager
# ---------------------------------------------------------------------------


class ConfigManager:
    """Manages persistent settings.

    Writes files atomically (write-to-temp, then rename) to prevent
    corruption on unexpected exit.  A corrupt config triggers a warning and
    a safe reset — it never aborts a run.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        """Initialise, creating ``~/.flatten/`` if necessary."""
        self._base = base_dir or Path.home() / ".flatten"
        self._config_path = self._base / "config.json"

        self._base.mkdir(parents=True, exist_ok=True)
        self._config: dict[str, Any] = self._load_config()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _atomic_write(self, path: Path, data: Any) -> None:
        """Serialise *data* as JSON and write atomically to *path*."""
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            raise

    def _load_config(self) -> dict[str, Any]:
        """Load ``config.json``, resetting to defaults on corruption."""
        if not self._config_path.exists():
            logger.debug("No config file — creating defaults")
            config = dict(DEFAULT_CONFIG)
            self._atomic_write(self._config_path, config)
            return config

        try:
            raw = self._config_path.read_text(encoding="utf-8")
            loaded = json.loads(raw)
            if not isinstance(loaded, dict):
                raise ValueError("Config root must be a JSON object")
            # Merge with defaults so new keys are always present
            merged = dict(DEFAULT_CONFIG)
            merged.update(loaded)
            return merged
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.warning(
                "Corrupt config.json (%s) — resetting to defaults", exc
            )
            config = dict(DEFAULT_CONFIG)
            self._atomic_write(self._config_path, config)
            return config

    # ------------------------------------------------------------------
    # Config access
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._config_path

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for *key*, or *default* if missing."""
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set *key* to *value* and persist the config file."""
        self._config[key] = value
        self._atomic_write(self._config_path, self._config)
        logger.debug("Config updated: %s = %r", key, value)

    def get_all(self) -> dict[str, Any]:
        """Return a shallow copy of the full config dict."""
        return dict(self._config)

    def get_int(self, key: str, minimum: int = 0) -> int:
        """Return *key* as an int no smaller than *minimum*.

        Falls back to the default when the stored value is unusable.
        """
        value = self._config.get(key, DEFAULT_CONFIG.get(key))
        try:
            number = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid %s in config (%r) — using default", key, value)
            number = int(DEFAULT_CONFIG[key])
        return max(minimum, number)

    def get_float(self, key: str, minimum: float = 0.0) -> float:
        """Float counterpart of :meth:`get_int`."""
        value = self._config.get(key, DEFAULT_CONFIG.get(key))
        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.warning("Invalid %s in config (%r) — using default", key, value)
            number = float(DEFAULT_CONFIG[key])
        return max(minimum, number)

    def get_list(self, key: str) -> list[Any]:
        """Return *key* as a list, falling back to the default if it is not one."""
        value = self._config.get(key, DEFAULT_CONFIG.get(key))
        if not isinstance(value, list):
            logger.warning("Invalid %s in config (%r) — using default", key, value)
            return list(DEFAULT_CONFIG.get(key, []))
        return list(value)
