"""Logging for the ``cardioview`` package, driven by the ``logging`` config section.

Config example::

    logging:
      level: INFO
      file: logs/viewer.log
      modules:
        fetcher: DEBUG

``CV_LOG_MODULE_LEVELS="fetcher=DEBUG,server.app=WARNING"`` overrides the
per-module levels from the config without editing the file.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Dict, List, Optional

from .config import ViewerConfig

PACKAGE_LOGGER = "cardioview"
ENV_MODULE_LEVELS = "CV_LOG_MODULE_LEVELS"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Marks handlers installed here so reconfiguring replaces only our own.
_OWNED = "_cardioview_owned"


def level_from_name(name: str) -> int:
    level = logging.getLevelName(str(name).strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name!r}")
    return level


def _qualified(name: str) -> str:
    name = name.strip()
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        return name
    return f"{PACKAGE_LOGGER}.{name}"


def module_levels(config: ViewerConfig, env_value: Optional[str] = None) -> Dict[str, int]:
    """Per-module levels from the config, with the environment entries on top.

    A bad level in the config file raises; malformed environment entries are
    skipped.
    """
    levels = {_qualified(name): level_from_name(lvl) for name, lvl in config.log_modules.items()}

    if env_value is None:
        env_value = os.getenv(ENV_MODULE_LEVELS, "")
    for entry in env_value.replace(";", ",").split(","):
        name, sep, lvl = entry.partition("=")
        if not sep or not name.strip():
            continue
        try:
            levels[_qualified(name)] = level_from_name(lvl)
        except ValueError:
            continue
    return levels


def _owned_handlers(logger: logging.Logger) -> List[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, _OWNED, False)]


def configure_logging(config: ViewerConfig, *, verbose: bool = False) -> logging.Logger:
    """Install stderr (and optional file) handlers on the package logger.

    Safe to call again with a different config: previously installed handlers
    are closed and replaced.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in _owned_handlers(logger):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(DEFAULT_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    for handler in handlers:
        # Handlers stay permissive so per-module overrides can enable DEBUG.
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(formatter)
        setattr(handler, _OWNED, True)
        logger.addHandler(handler)

    logger.setLevel(logging.DEBUG if verbose else level_from_name(config.log_level))
    logger.propagate = False

    for name, level in module_levels(config).items():
        logging.getLogger(name).setLevel(level)
    return logger
