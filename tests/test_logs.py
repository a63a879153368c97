"""Tests for log setup and action formatting."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path

import pytest

from cryptmirror.logs import LOGGER_NAME, Ansi, ColorizingFormatter, log_action, log_file_path, setup_logger


@pytest.fixture
def restore_logger():
    logger = logging.getLogger(LOGGER_NAME)
    saved = (list(logger.handlers), logger.propagate, logger.level)
    logger.handlers.clear()
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = saved[0]
    logger.propagate = saved[1]
    logger.setLevel(saved[2])


def _record(msg: str, level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("cryptmirror.test", level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestColorizingFormatter:
    def test_plain_when_color_disabled(self):
        fmt = ColorizingFormatter(use_color=False, fmt="%(message)s")
        assert fmt.format(_record("COPY | a -> b", action="COPY")) == "COPY | a -> b"

    def test_action_and_path_colored(self):
        fmt = ColorizingFormatter(use_color=True, fmt="%(message)s")
        out = fmt.format(_record("NEW | /x/a.txt", action="NEW", path_text="/x/a.txt", is_dir=False))
        assert f"{Ansi.CYAN}NEW{Ansi.RESET}" in out
        assert f"{Ansi.WHITE}/x/a.txt{Ansi.RESET}" in out

    def test_directory_paths_use_dir_color(self):
        fmt = ColorizingFormatter(use_color=True, fmt="%(message)s")
        out = fmt.format(_record("MKDIR | /t/new", action="MKDIR", path_text="/t/new", is_dir=True))
        assert f"{Ansi.LIGHT_BROWN}MKDIR{Ansi.RESET}" in out
        assert f"{Ansi.LIGHT_BROWN}/t/new{Ansi.RESET}" in out
        assert Ansi.WHITE not in out

    def test_errors_are_red(self):
        fmt = ColorizingFormatter(use_color=True, fmt="%(message)s")
        out = fmt.format(_record("boom", level=logging.ERROR))
        assert out.startswith(Ansi.RED)


class TestSetup:
    def test_setup_logger_writes_daily_file(self, tmp_path: Path, restore_logger):
        logger = setup_logger(tmp_path / "logs")
        log_action(logger, "DELETE", "/t/a.txt", path="/t/a.txt")
        for handler in logger.handlers:
            handler.flush()

        files = list((tmp_path / "logs").glob("cryptmirror_*.log"))
        assert len(files) == 1
        text = files[0].read_text(encoding="utf-8")
        assert "DELETE | /t/a.txt" in text
        assert "\x1b[" not in text

    def test_setup_logger_is_idempotent(self, tmp_path: Path, restore_logger):
        logger = setup_logger(tmp_path)
        count = len(logger.handlers)
        assert setup_logger(tmp_path) is logger
        assert len(logger.handlers) == count


class TestLogAction:
    def test_extras_attached(self, caplog):
        logger = logging.getLogger("cryptmirror.test.actions")
        with caplog.at_level(logging.INFO, logger="cryptmirror.test.actions"):
            log_action(logger, "FORGET", "gone", path="/s/gone.txt")
        record = caplog.records[-1]
        assert record.action == "FORGET"
        assert record.path_text == "/s/gone.txt"
        assert record.getMessage() == "FORGET | gone"


def test_log_file_path_is_daily(tmp_path: Path):
    assert log_file_path(tmp_path, dt.date(2024, 2, 29)) == tmp_path / "cryptmirror_2024-02-29.log"
