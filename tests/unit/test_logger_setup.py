import json
import logging
import logging.handlers

import pytest

from collabhub.utils.config_manager import LoggingConfiguration
from collabhub.utils.logger_setup import JsonFormatter, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_setup_logging_creates_rotating_handler(tmp_path):
    log_dir = tmp_path / "logs"
    cfg = LoggingConfiguration(level="DEBUG", enable_file_logging=True, log_directory=str(log_dir), backup_count=1)

    setup_logging(log_config=cfg)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)

    logging.getLogger(__name__).info("hello world")
    assert (log_dir / "collabhub.log").exists()


def test_level_override_and_invalid_level():
    setup_logging(level="warning", log_config=LoggingConfiguration())
    assert logging.getLogger().level == logging.WARNING

    setup_logging(level="LOUD", log_config=LoggingConfiguration())
    assert logging.getLogger().level == logging.INFO


def test_custom_console_handler_is_used():
    handler = logging.NullHandler()
    setup_logging(log_config=LoggingConfiguration(), console_handler=handler)
    assert logging.getLogger().handlers == [handler]


def test_json_formatter():
    record = logging.LogRecord(
        "collabhub.test", logging.WARNING, __file__, 10, "delivered %s to %s", ("msg_1", "quality"), None
    )
    entry = json.loads(JsonFormatter().format(record))
    assert entry["level"] == "WARNING"
    assert entry["name"] == "collabhub.test"
    assert entry["message"] == "delivered msg_1 to quality"
    assert entry["args"] == ["msg_1", "quality"]

    record = logging.LogRecord("x", logging.INFO, __file__, 1, "%s", (object(),), None)
    entry = json.loads(JsonFormatter().format(record))
    assert entry["args"][0].startswith("<object object")
