from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from microagent.core.config.settings import LoggingSettings

from .json_formatter import JSONFormatter

_LOGGER_NAME = "microagent"
_CONFIGURED_ATTR = "_microagent_json_logging"


def _parse_level(raw: str) -> int:
    normalized = raw.strip().upper()
    return getattr(logging, normalized, logging.INFO)


def configure_logging(state_dir: Path, settings: LoggingSettings | None = None) -> logging.Logger:
    settings = settings or LoggingSettings()
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(_parse_level(settings.level))
    logger.propagate = False

    formatter = JSONFormatter()

    if not any(getattr(handler, _CONFIGURED_ATTR, False) for handler in logger.handlers):
        stdout_handler = logging.StreamHandler(stream=sys.stdout)
        stdout_handler.setFormatter(formatter)
        setattr(stdout_handler, _CONFIGURED_ATTR, True)
        logger.addHandler(stdout_handler)

    if settings.to_file:
        log_dir = Path(settings.log_dir) if settings.log_dir else state_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "microagent.log"

        file_exists = any(
            isinstance(handler, RotatingFileHandler)
            and getattr(handler, _CONFIGURED_ATTR, False)
            and Path(handler.baseFilename) == log_path
            for handler in logger.handlers
        )
        if not file_exists:
            file_handler = RotatingFileHandler(
                filename=log_path,
                maxBytes=settings.max_bytes,
                backupCount=settings.backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            setattr(file_handler, _CONFIGURED_ATTR, True)
            logger.addHandler(file_handler)

    return logger
