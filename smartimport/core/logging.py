"""
Logging configuration for SmartImport.

Provides consistent log formatting across all modules.
"""

import logging
import sys
from typing import Dict, Optional

_loggers: Dict[str, logging.Logger] = {}


def _configured_level() -> int:
    from smartimport.core.config import get_config_value

    try:
        name = get_config_value("logging", "level", default="INFO")
    except FileNotFoundError:
        return logging.INFO
    return logging.getLevelName(str(name).upper()) if isinstance(name, str) else int(name)


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a configured logger for a module.

    Args:
        name: Logger name (e.g., 'smartimport.imports.commit')
        level: Logging level (default: logging.level from config.yaml)

    Returns:
        Configured logger
    """
    if name in _loggers:
        return _loggers[name]

    if level is None:
        level = _configured_level()

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)

        formatter = logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    _loggers[name] = logger
    return logger
