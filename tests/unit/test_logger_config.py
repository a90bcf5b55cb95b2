from __future__ import annotations

import logging

import pytest

from quizarena.utils.config_manager import ConfigManager
from quizarena.utils.logger_config import (
    LOGGER_NAMESPACE, ColoredFormatter, get_logger, setup_logging, setup_logging_from_config
)


@pytest.fixture(autouse=True)
def restore_namespace_logger():
    root = logging.getLogger(LOGGER_NAMESPACE)
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)
    get_logger("storage").setLevel(logging.NOTSET)


def make_record(level: int) -> logging.LogRecord:
    return logging.LogRecord("quizarena.rating", level, __file__, 1, "rated %s users", (3,), None)


def test_formatter_colors_only_when_enabled() -> None:
    colored = ColoredFormatter().format(make_record(logging.ERROR))
    plain = ColoredFormatter(colored=False).format(make_record(logging.ERROR))

    assert colored.startswith("\033[31m") and colored.endswith("\033[0m")
    assert "\033[" not in plain
    assert plain.endswith("quizarena.rating - rated 3 users")


def test_file_handler_records_debug(tmp_path) -> None:
    log_file = tmp_path / "arena.log"
    setup_logging(level="WARNING", log_file=str(log_file), enable_colors=False)

    get_logger("ledger").debug("draft stored")
    for handler in logging.getLogger(LOGGER_NAMESPACE).handlers:
        handler.flush()

    assert "draft stored" in log_file.read_text()


def test_setup_is_idempotent_and_applies_component_levels() -> None:
    setup_logging(level="INFO")
    root = setup_logging(level="INFO", component_levels={"storage": "warning"})

    assert len(root.handlers) == 1
    assert get_logger("storage").level == logging.WARNING


def test_setup_from_config_writes_timestamped_file(tmp_path) -> None:
    config = ConfigManager(str(tmp_path / "none.json"), load_env=False)
    config.set("logging.directory", str(tmp_path / "logs"))

    log_filename = setup_logging_from_config(config, prefix="finalize_ratings")

    assert log_filename is not None
    assert log_filename.startswith(str(tmp_path / "logs" / "finalize_ratings_"))
    assert log_filename.endswith(".log")
