"""
Configuration management for SmartImport.

Loads config.yaml and provides type-safe access to settings.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional

# Config file location: lives alongside the smartimport package
_PACKAGE_DIR = Path(__file__).parent.parent.resolve()
CONFIG_PATH = _PACKAGE_DIR / "config.yaml"

# Cache for loaded config
_config_cache: Optional[Dict[str, Any]] = None


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Load configuration from config.yaml.

    Args:
        reload: Force reload even if cached

    Returns:
        Configuration dictionary
    """
    global _config_cache

    if _config_cache is not None and not reload:
        return _config_cache

    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as f:
        _config_cache = yaml.safe_load(f) or {}

    return _config_cache


def get_config_value(*keys: str, default: Any = None) -> Any:
    """
    Get a nested config value safely.

    Args:
        *keys: Path of keys to traverse (e.g., 'imports', 'batch_size')
        default: Value to return if key not found

    Example:
        batch_size = get_config_value('imports', 'batch_size', default=500)
    """
    config = get_config()

    for key in keys:
        if isinstance(config, dict) and key in config:
            config = config[key]
        else:
            return default

    return config


_TRACKABLE_DEFAULTS: Dict[str, List[str]] = {
    "people": [
        "first_name", "last_name", "middle_name", "title",
        "email", "external_id", "roles", "job_title",
    ],
    "schedules": [
        "term", "course_code", "course_title", "section", "crn", "credits",
        "instructor_id", "instructor_name", "instructor_assignments",
        "meeting_patterns", "room_ids", "room_names",
    ],
    "rooms": ["name", "building", "room_number", "room_key"],
}

# Bookkeeping fields written by the store; excluded from every diff
SYSTEM_FIELDS = frozenset({"id", "created_at", "updated_at"})


def get_trackable_fields(collection: str) -> List[str]:
    """Return the diff allowlist for a collection (config.yaml overrides defaults)."""
    configured = get_config_value("imports", "trackable_fields", collection)
    fields = configured if configured else _TRACKABLE_DEFAULTS.get(collection, [])
    return [f for f in fields if f not in SYSTEM_FIELDS]


def get_batch_size() -> int:
    return int(get_config_value("imports", "batch_size", default=500))


class SmartImportPaths:
    """
    Centralized path access for SmartImport.

    All paths are loaded from config.yaml with sensible fallbacks.

    Usage:
        from smartimport.core.config import SMARTIMPORT_PATHS
        db = SMARTIMPORT_PATHS.database
    """

    def __init__(self):
        self._config = None

    def _ensure_config(self):
        if self._config is None:
            self._config = get_config()

    def _resolve(self, raw: str) -> Path:
        """Resolve a path: if relative, resolve against _PACKAGE_DIR."""
        p = Path(raw)
        if not p.is_absolute():
            p = _PACKAGE_DIR / p
        return p

    @property
    def database(self) -> Path:
        env_path = os.environ.get("SMARTIMPORT_DATABASE")
        if env_path:
            return self._resolve(env_path)
        self._ensure_config()
        raw = self._config.get("destinations", {}).get("database", "data/smartimport.db")
        return self._resolve(raw)

    @property
    def data_dir(self) -> Path:
        return self.database.parent

    @property
    def config_dir(self) -> Path:
        return _PACKAGE_DIR

    @property
    def root(self) -> Path:
        return _PACKAGE_DIR


# Singleton instance
SMARTIMPORT_PATHS = SmartImportPaths()
