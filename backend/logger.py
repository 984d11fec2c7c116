"""Shared logger factory: one daily file per component under LOGS_DIR plus console output."""
import logging
import os
from datetime import date
from typing import Optional

LOGS_DIR = os.getenv("LOGS_DIR", os.path.join(os.path.dirname(__file__), "logs"))
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def log_file_path(name: str, day: Optional[date] = None) -> str:
    """logs/<name>_YYYYMMDD.log"""
    day = day or date.today()
    return os.path.join(LOGS_DIR, f"{name}_{day.strftime('%Y%m%d')}.log")


def _console_level() -> int:
    # LOG_LEVEL only affects the console; files always capture DEBUG
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logger(name: str = "exploragon") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        return logger

    os.makedirs(LOGS_DIR, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file_path(name), encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(_console_level())
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return logger
