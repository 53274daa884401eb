"""Configures logging for the application, including JSON formatting."""

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config_manager import LoggingConfiguration, get_config

LOG_FILE_NAME = "collabhub.log"
TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """Formats log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        """Formats the log record into a JSON string."""
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "pathname": record.pathname,
            "lineno": record.lineno,
        }
        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_entry["stack_info"] = self.formatStack(record.stack_info)

        # Non-serializable args fall back to their repr
        if record.args:
            try:
                json.dumps(record.args)
                log_entry["args"] = record.args
            except TypeError:
                log_entry["args"] = tuple(repr(arg) for arg in record.args)

        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(
    level: Optional[str] = None,
    log_config: Optional[LoggingConfiguration] = None,
    console_handler: Optional[logging.Handler] = None,
) -> None:
    """Configures the root logger from ``LoggingConfiguration``.

    Args:
        level: Optional log level string overriding the configured level.
        log_config: Explicit logging configuration; defaults to the global config.
        console_handler: Handler used for console output (the CLI passes a
            rich handler); a plain ``StreamHandler`` otherwise.
    """
    if log_config is None:
        log_config = get_config().logging

    effective_level = (level or log_config.level).upper()
    log_level_val = getattr(logging, effective_level, None)
    if not isinstance(log_level_val, int):
        logging.getLogger(__name__).warning("Invalid log level '%s'. Defaulting to INFO.", effective_level)
        effective_level = "INFO"
        log_level_val = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_val)

    # Clear existing handlers to avoid duplicates if called multiple times
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    if log_config.enable_structured_logging:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_LOG_FORMAT)

    if console_handler is None:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level_val)
    root_logger.addHandler(console_handler)

    if log_config.enable_file_logging:
        log_file_path = os.path.join(log_config.log_directory, LOG_FILE_NAME)
        os.makedirs(log_config.log_directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file_path,
            maxBytes=log_config.max_log_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)
        logging.getLogger(__name__).info(f"File logging configured to {log_file_path}")

    logging.getLogger(__name__).info("Logging setup complete. Effective Level: %s", effective_level)
