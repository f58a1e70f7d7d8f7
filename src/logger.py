"""
Logging Setup Module.

Builds the single application logger used across the service. Log calls pass
either plain strings or dictionaries with a ``message`` key plus context
fields; the formatters below render both.

Features:
- Console output for every environment
- Rotating log files in the configured log directory
- JSON lines in production, readable text in development
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        if isinstance(record.msg, dict):
            entry.update(record.msg)
        else:
            entry["message"] = record.getMessage()
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Readable single-line output for development."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            fields = dict(record.msg)
            message = fields.pop("message", "")
            context = " ".join(f"{key}={value}" for key, value in fields.items())
            record = logging.makeLogRecord(
                {**record.__dict__, "msg": f"{message} {context}".strip(), "args": ()}
            )
        return super().format(record)


class LogManager:
    """
    Configures and owns the application logger.

    Attributes:
        logger (logging.Logger): The configured application logger.
    """

    def __init__(
        self,
        app_name: str,
        log_dir: str = "logs",
        development: bool = False,
        level: int = logging.INFO,
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 5,
    ):
        """Initialize handlers for the application logger.

        Args:
            app_name (str): Logger name, also used for the log file name.
            log_dir (str): Directory for rotating log files. Empty disables file logging.
            development (bool): Use text output instead of JSON lines.
            level (int): Logging level.
            max_bytes (int): Size at which log files rotate.
            backup_count (int): Number of rotated files to keep.
        """
        self.logger = logging.getLogger(app_name)
        self.logger.setLevel(level)
        self.logger.propagate = False

        # Re-instantiation replaces handlers instead of stacking them
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        formatter = TextFormatter() if development else JsonFormatter()

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        self.logger.addHandler(console)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, f"{app_name}.log"),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(JsonFormatter())
            self.logger.addHandler(file_handler)
