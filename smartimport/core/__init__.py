"""
SmartImport Core - Shared services for all modules.

Usage:
    from smartimport.core import get_db, get_config, get_logger, SMARTIMPORT_PATHS
"""

from smartimport.core.config import get_config, get_config_value, SMARTIMPORT_PATHS
from smartimport.core.db import DocumentStore, get_db, migrate_all
from smartimport.core.logging import get_logger

__all__ = [
    "get_config",
    "get_config_value",
    "SMARTIMPORT_PATHS",
    "DocumentStore",
    "get_db",
    "migrate_all",
    "get_logger",
]
