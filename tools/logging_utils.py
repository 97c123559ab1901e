"""Logging Utilities for Recipe Ingest
=======================================

Centralized logging configuration and utilities.

Usage:
    from tools.logging_utils import get_logger

    logger = get_logger(__name__)
    logger.info("✅ Operation completed successfully")
    logger.error("❌ Operation failed")

Standards:
    - Backend/operational code: MUST use logger
    - User-facing output: Use print()/rich for CLI
    - Log levels: CRITICAL, ERROR, WARNING, INFO, DEBUG
    - Configuration: config.LOGGING_CONFIG
    - Location: data/logs/recipe_ingest.log (10MB rotation, 5 backups)
"""

import logging
import logging.config
import os
import threading

from config import DATA_DIR, LOGGING_CONFIG

_setup_lock = threading.Lock()
_configured = False


def setup_logging():
    """
    Initialize logging configuration once.

    Thread-safe and idempotent - safe to call multiple times.
    """
    global _configured
    with _setup_lock:
        if _configured:
            return
        try:
            os.makedirs(str(DATA_DIR / "logs"), exist_ok=True)
            logging.config.dictConfig(LOGGING_CONFIG)
        except (OSError, ValueError) as e:
            print(f"Warning: Logging setup failed: {e}")
        _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get logger for module.

    Args:
        name: Module name (use __name__)

    Returns:
        Configured logger instance
    """
    setup_logging()
    return logging.getLogger(name)


class LogFloodGuard(logging.Filter):
    """
    Stops emitting records after ``max_entries`` per session.

    One instance is created at startup (see runtime.create_runtime) and
    attached to the root handlers. A record is counted once however many
    handlers it passes through. ``reset()`` starts a new session budget.
    """

    _DECISION_ATTR = "_flood_guard_allowed"

    def __init__(self, max_entries: int = 200):
        super().__init__()
        self.max_entries = max_entries
        self.emitted = 0
        self.suppressed = 0
        self._lock = threading.Lock()

    def filter(self, record: logging.LogRecord) -> bool:
        with self._lock:
            decision = getattr(record, self._DECISION_ATTR, None)
            if decision is not None:
                return decision
            if self.emitted >= self.max_entries:
                self.suppressed += 1
                decision = False
            else:
                self.emitted += 1
                decision = True
            setattr(record, self._DECISION_ATTR, decision)
            return decision

    def reset(self) -> None:
        with self._lock:
            self.emitted = 0
            self.suppressed = 0

    def install(self, logger: logging.Logger = None) -> None:
        """Attach to every handler of ``logger`` (root by default)."""
        target = logger or logging.getLogger()
        for handler in target.handlers:
            if self not in handler.filters:
                handler.addFilter(self)
