# gatehouse/utils/logger.py
"""
Logging for the gatehouse service.

Every module calls get_logger(__name__). The root logger is set up on first use
from settings: LOG_LEVEL for the threshold, and LOG_DIR/LOG_FILE for a rotating
file next to the console output. An empty LOG_FILE keeps logs on the console only.
Guard actions are logged as "[TAG] ..." lines (GATE_IN, COMPLETE, CARD, ROLE...).
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from gatehouse.config import settings

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def log_path(cfg=settings):
    """Absolute path of the log file, or None when file logging is off."""
    if not cfg.LOG_FILE:
        return None
    log_dir = cfg.LOG_DIR if os.path.isabs(cfg.LOG_DIR) else os.path.join(PROJECT_ROOT, cfg.LOG_DIR)
    return os.path.join(log_dir, cfg.LOG_FILE)


def build_handlers(cfg=settings) -> list[logging.Handler]:
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    level = cfg.LOG_LEVEL.upper()

    handlers = [logging.StreamHandler()]
    path = log_path(cfg)
    if path:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handlers.append(RotatingFileHandler(
            filename=path,
            maxBytes=cfg.LOG_MAX_MB * 1024 * 1024,
            backupCount=cfg.LOG_BACKUP_COUNT,
            encoding="utf-8",
        ))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(fmt)
    return handlers


def _configure_root_logger():
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL.upper())
    for handler in build_handlers(settings):
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    _configure_root_logger()
    return logging.getLogger(name)
