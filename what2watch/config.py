from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULTS: Dict[str, Any] = {
    "DATABASE_PATH": str(PROJECT_ROOT / "what2watch.db"),
    "TMDB_API_KEY": None,
    "TMDB_TIMEOUT": 20,
    "LOG_LEVEL": "INFO",
    "LOG_FILE": None,
    "LOG_MAX_BYTES": 10485760,
    "LOG_BACKUP_COUNT": 5,
    "PAGINATION_MAX_VISIBLE": 7,
    "DEFAULT_PAGE_SIZE": 20,
    "MAX_PAGE_SIZE": 50,
}

_INT_KEYS = {
    "TMDB_TIMEOUT",
    "LOG_MAX_BYTES",
    "LOG_BACKUP_COUNT",
    "PAGINATION_MAX_VISIBLE",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _load_yaml(path: str | os.PathLike | None) -> Dict[str, Any]:
    """Read the optional YAML settings file; keys are upper-cased."""
    if not path:
        return {}
    config_file = Path(path)
    if not config_file.exists():
        return {}
    with open(config_file, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_file}")
    return {str(key).upper(): value for key, value in data.items()}


def load_settings(overrides: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    """
    Build the application settings.

    Precedence, lowest first: built-in defaults, ``what2watch.yaml`` (or the
    file named by ``WHAT2WATCH_CONFIG``), environment variables (``.env`` is
    loaded first), then explicit ``overrides``.
    """
    load_dotenv()

    settings = dict(DEFAULTS)
    config_path = os.getenv("WHAT2WATCH_CONFIG", str(PROJECT_ROOT / "what2watch.yaml"))
    settings.update({k: v for k, v in _load_yaml(config_path).items() if k in DEFAULTS})

    for key in DEFAULTS:
        value = os.getenv(key)
        if value not in (None, ""):
            settings[key] = value

    if overrides:
        settings.update(overrides)

    for key in _INT_KEYS:
        try:
            settings[key] = int(settings[key])
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer, got {settings[key]!r}")

    max_visible = settings["PAGINATION_MAX_VISIBLE"]
    if max_visible < 5 or max_visible % 2 == 0:
        raise ValueError(f"PAGINATION_MAX_VISIBLE must be an odd integer >= 5, got {max_visible}")

    return settings


def setup_logging(settings: Mapping[str, Any]) -> logging.Logger:
    """Configure the ``what2watch`` logger tree (console plus optional rotating file)."""
    log_level = getattr(logging, str(settings.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    logger = logging.getLogger("what2watch")
    logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(getattr(h, "_what2watch", False) for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        console_handler._what2watch = True  # type: ignore[attr-defined]
        logger.addHandler(console_handler)

        log_file = settings.get("LOG_FILE")
        if log_file:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=settings.get("LOG_MAX_BYTES", 10485760),
                backupCount=settings.get("LOG_BACKUP_COUNT", 5),
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            file_handler._what2watch = True  # type: ignore[attr-defined]
            logger.addHandler(file_handler)

    return logger
