"""Logging configuration for the reconciliation application."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER_NAME = "ledger_recon"
AUDIT_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.audit"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
AUDIT_FORMAT = "%(asctime)s %(message)s"


def _rotating_handler(path: Path, fmt: str) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)  # 10MB
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def resolve_level(level: Union[int, str]) -> int:
    """Accept either a logging constant or a level name such as "debug"."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    log_format: Optional[str] = None,
    audit_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure application logging.

    Console output goes through the application logger. When ``audit_file``
    is given, the audit logger additionally writes match, merge and session
    events to their own rotating file so the trail survives console noise.

    Args:
        level: Logging level constant or name
        log_file: Optional path to the application log file
        log_format: Optional custom console format string
        audit_file: Optional path to the audit trail file

    Returns:
        Configured application logger
    """
    level = resolve_level(level)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format or DEFAULT_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = _rotating_handler(log_file, FILE_FORMAT)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    audit_logger.handlers = []
    if audit_file:
        # Audit records are kept even when the console is quieter than INFO
        audit_logger.setLevel(logging.INFO)
        audit_logger.addHandler(_rotating_handler(audit_file, AUDIT_FORMAT))
    else:
        audit_logger.setLevel(logging.NOTSET)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance nested under the application logger.

    Args:
        name: Short component name (e.g. "audit")

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
