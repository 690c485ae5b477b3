"""
Logging Configuration for the Fleet Tracker services

Every process (API, maintenance daemon) configures the "fleet_tracker" logger
once at startup; module loggers (logging.getLogger(__name__)) propagate to it.

Files written to LOG_DIR:
    <name>.log          everything at the configured level (size rotated)
    <name>_errors.log   ERROR and above (size rotated)
    <name>_daily.log    one file per UTC day, one week kept
    crashes.log         tracebacks of scheduled jobs that blew up
"""

import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from settings import APP
from timezone_utils import utc_now

LOGS_DIR = APP.log_dir

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

MB = 1024 * 1024

# (file suffix, minimum level or None for the configured one, max bytes, backups)
ROTATING_FILES = [
    ("", None, 10 * MB, 5),
    ("_errors", logging.ERROR, 5 * MB, 3),
]


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname)
        if color is None:
            return super().format(record)
        # Copy so file handlers sharing the record never see escape codes
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


class CrashLogger:
    """Appends unexpected job failures (with traceback) to crashes.log"""

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir or LOGS_DIR)
        self.crash_log = self.log_dir / "crashes.log"

    def log_crash(self, error: BaseException, context: str = "") -> Path:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        rule = "=" * 80

        with open(self.crash_log, "a", encoding="utf-8") as f:
            f.write(
                f"\n{rule}\n"
                f"CRASH {utc_now().isoformat()} [{context or 'unknown'}]\n"
                f"{type(error).__name__}: {error}\n"
                f"{rule}\n"
                f"{trace}\n"
            )
        return self.crash_log


def level_from_name(level_name: str) -> int:
    """Translate LOG_LEVEL strings ("debug", "INFO") to logging constants."""
    return getattr(logging, str(level_name).upper(), logging.INFO)


def setup_logging(
    name: str = "fleet_tracker",
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    (Re)configure a named logger. Existing handlers are replaced, so calling
    this twice does not duplicate output.

    Args:
        name: Logger name (also the log file prefix)
        level: Logging level
        log_to_file: Write the rotating log files
        log_to_console: Write colored output to stdout
        log_dir: Directory for log files (defaults to LOG_DIR)
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if log_to_file:
        target_dir = Path(log_dir or LOGS_DIR)
        target_dir.mkdir(parents=True, exist_ok=True)

        handlers = [
            RotatingFileHandler(
                target_dir / f"{name}{suffix}.log",
                maxBytes=max_bytes,
                backupCount=backups,
                encoding="utf-8",
            )
            for suffix, _, max_bytes, backups in ROTATING_FILES
        ]
        levels = [min_level or level for _, min_level, _, _ in ROTATING_FILES]

        handlers.append(
            TimedRotatingFileHandler(
                target_dir / f"{name}_daily.log",
                when="midnight",
                backupCount=7,
                encoding="utf-8",
                utc=True,
            )
        )
        levels.append(level)

        for handler, handler_level in zip(handlers, levels):
            handler.setLevel(handler_level)
            handler.setFormatter(file_formatter)
            logger.addHandler(handler)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(ColoredFormatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Logger configured from LOG_LEVEL / LOG_DIR"""
    if level is None:
        level = level_from_name(APP.log_level)
    return setup_logging(name, level)


# Global crash logger instance
crash_logger = CrashLogger()
