from __future__ import annotations

import datetime as dt
import logging
import sys
from pathlib import Path
from typing import Optional

import colorama

LOGGER_NAME = "cryptmirror"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    CYAN = "\x1b[36m"
    ORANGE = "\x1b[38;5;208m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


# transfers green/cyan, anything destructive orange, bookkeeping brown
ACTION_COLORS = {
    "COPY": Ansi.GREEN,
    "NEW": Ansi.CYAN,
    "DELETE": Ansi.ORANGE,
    "DELETED_AT_TARGET": Ansi.ORANGE,
    "CONSIDERED_DELETED": Ansi.ORANGE,
    "FORGET": Ansi.LIGHT_BROWN,
    "MKDIR": Ansi.LIGHT_BROWN,
    "SKIP": Ansi.LIGHT_BROWN,
}


def _paint(text: str, color: str) -> str:
    return f"{color}{text}{Ansi.RESET}"


class ColorizingFormatter(logging.Formatter):
    """Console formatter: errors in red, ``log_action`` records get their action and path colored."""

    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not self.use_color:
            return text
        if record.levelno >= logging.ERROR:
            return _paint(text, Ansi.RED)

        action = getattr(record, "action", None)
        if action in ACTION_COLORS:
            text = text.replace(action, _paint(action, ACTION_COLORS[action]), 1)

        path_text = getattr(record, "path_text", None)
        if path_text:
            color = Ansi.LIGHT_BROWN if getattr(record, "is_dir", False) else Ansi.WHITE
            text = text.replace(path_text, _paint(path_text, color))
        return text


def log_file_path(log_dir: Path, day: Optional[dt.date] = None) -> Path:
    """One plain-text log per day: ``cryptmirror_YYYY-MM-DD.log``."""
    day = day or dt.date.today()
    return log_dir / f"{LOGGER_NAME}_{day.isoformat()}.log"


def setup_logger(log_dir: Path, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    if logger.handlers:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_file_path(log_dir)
    colorama.init()

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))

    use_color = bool(getattr(sys.stdout, "isatty", lambda: False)())
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ColorizingFormatter(use_color, fmt=LOG_FORMAT, datefmt=DATE_FORMAT))

    for handler in (file_handler, console):
        handler.setLevel(level)
        logger.addHandler(handler)

    logger.info("Logging to: %s", log_path)
    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[str] = None,
    is_dir: bool = False,
    level: int = logging.INFO,
) -> None:
    """Log ``ACTION | message``; ``path`` is carried along so the console can highlight it."""
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = is_dir
    logger.log(level, f"{action} | {message}", extra=extra)
