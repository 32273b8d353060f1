# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

import logging
import sys

_LOGGER_PREFIX = "bioexporter"
_level = logging.INFO


class COLORS:
    """ANSI color codes for terminal output"""
    reset = "\033[0m"
    green_code = "\033[32m"
    blue = "\033[34m"
    magenta = "\033[35m"
    cyan = "\033[36m"
    white = "\033[37m"

    @staticmethod
    def intense_red(text):
        return f"\033[91m{text}\033[0m"

    @staticmethod
    def intense_blue(text):
        return f"\033[94m{text}\033[0m"

    @staticmethod
    def green(text):
        return f"\033[32m{text}\033[0m"

    @staticmethod
    def yellow(text):
        return f"\033[33m{text}\033[0m"


class ComponentFormatter(logging.Formatter):
    """Prefix colored with the component color; warnings and errors stand out"""

    def __init__(self, color):
        super().__init__(f"{color}%(asctime)s - %(name)s{COLORS.reset} - %(levelname)s - %(message)s")

    def format(self, record):
        levelname = record.levelname
        if record.levelno >= logging.ERROR:
            record.levelname = COLORS.intense_red(levelname)
        elif record.levelno >= logging.WARNING:
            record.levelname = COLORS.yellow(levelname)
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def get_logger(component, color=COLORS.white):
    """Colored logger of a bioexporter component, e.g. ``bioexporter.decoder``"""
    logger = logging.getLogger(f"{_LOGGER_PREFIX}.{component}")

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ComponentFormatter(color))
        logger.addHandler(handler)
        logger.setLevel(_level)

    return logger


def set_log_level(level):
    """Change the level of every component logger, including ones created later"""
    global _level
    _level = level
    for name, logger in logging.Logger.manager.loggerDict.items():
        if name.startswith(f"{_LOGGER_PREFIX}.") and isinstance(logger, logging.Logger):
            logger.setLevel(level)
