"""User settings the catalog depends on.

Only the library root is persisted, in ``~/.icebreaker/settings.json``.
Environment overrides:

* ``ICEBREAKER_HOME``: configuration directory (default ``~/.icebreaker``)
* ``ICEBREAKER_LIBRARY``: library root (default ``<home>/models``)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

BOOKMARKS_FILE = "bookmarks.json"
SETTINGS_FILE = "settings.json"

# Models used to be stored flat in ./models before the per-model layout.
LEGACY_DIRECTORY = Path("models")


def config_dir() -> Path:
    env_dir = os.environ.get("ICEBREAKER_HOME", "")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".icebreaker"


def _default_library(home: Path) -> Path:
    env_library = os.environ.get("ICEBREAKER_LIBRARY", "")
    if env_library:
        return Path(env_library).expanduser()
    return home / "models"


@dataclass
class Settings:
    """Paths used by the catalog and the transfer pipeline."""

    library: Path = field(default_factory=lambda: _default_library(config_dir()))
    config_dir: Path = field(default_factory=config_dir)
    legacy_directory: Path = LEGACY_DIRECTORY

    def bookmarks(self) -> Path:
        """Path of the bookmark file."""
        return self.config_dir / BOOKMARKS_FILE

    def settings_path(self) -> Path:
        return self.config_dir / SETTINGS_FILE

    @classmethod
    def fetch(cls, home: Optional[Path] = None) -> "Settings":
        """Load settings, falling back to defaults for anything missing."""
        home = home or config_dir()
        settings = cls(library=_default_library(home), config_dir=home)
        data = _load_json(settings.settings_path())
        library = data.get("library")
        if isinstance(library, str) and library and not os.environ.get("ICEBREAKER_LIBRARY"):
            settings.library = Path(library).expanduser()
        return settings

    def save(self) -> None:
        path = self.settings_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        data = _load_json(path)
        data["library"] = str(self.library)
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        logger.info("saved settings to %s", path)


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
        logger.warning("ignoring unreadable settings file %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}
