"""Logging setup for dispatcher runs."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: int = logging.INFO, log_file: Optional[str | Path] = None) -> logging.Logger:
    """Attach a rich console handler (and optionally a JSON-lines file) to the package logger."""
    handler = RichHandler(console=Console(stderr=True), show_time=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger("dispatcher")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(StructuredJsonFormatter())
        logger.addHandler(file_handler)

    return logger


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per record, for machine-readable run logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)
