"""
Logging setup and configuration for AD Group Sync.

Log output goes to one file per day, adsync<year><month><day>.log, opened in
append mode inside the configured directory. When logging is disabled every
log call is a no-op.
"""

import os
import re
import sys
import logging
import traceback
from datetime import date
from typing import Optional

from adsync.config import LoggingConfig

DATE_FORMAT = '%Y/%m/%d %H:%M:%S'


def log_file_name(day: Optional[date] = None) -> str:
    """Daily log file name, without zero padding (adsync2024315.log)."""
    day = day or date.today()
    return f"adsync{day.year}{day.month}{day.day}.log"


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = ['password', 'passwd', 'pwd', 'secret', 'credential']

    def filter(self, record):
        """Filter out sensitive data from log records."""
        msg = record.getMessage()
        for keyword in self.SENSITIVE_KEYWORDS:
            msg = re.sub(rf'({keyword}\s*[=:]\s*)[^\s,}}\]]+', r'\1****', msg, flags=re.IGNORECASE)
            msg = re.sub(rf'("{keyword}"\s*:\s*")[^"]*(")', r'\1****\2', msg, flags=re.IGNORECASE)
        record.msg = msg
        record.args = None
        return True


class SyncLogFormatter(logging.Formatter):
    """
    Prefix every line with its level, followed by the date and time.

    Errors additionally carry the source location. When the record holds an
    exception that is the line that raised it, otherwise the log call:

        INFO: 2024/03/15 10:22:01 12 records retrieved
        ERROR: 2024/03/15 10:22:03 ldap_client.py:228: ldap modify error: ...
    """

    def __init__(self):
        super().__init__('%(levelname)s: %(asctime)s %(message)s', datefmt=DATE_FORMAT)
        self._error_formatter = logging.Formatter(
            '%(levelname)s: %(asctime)s %(location)s: %(message)s',
            datefmt=DATE_FORMAT
        )

    @staticmethod
    def source_location(record) -> str:
        if record.exc_info and record.exc_info[2] is not None:
            frame = traceback.extract_tb(record.exc_info[2])[-1]
            return f"{os.path.basename(frame.filename)}:{frame.lineno}"
        return f"{record.filename}:{record.lineno}"

    def format(self, record):
        if record.levelno >= logging.ERROR:
            record.location = self.source_location(record)
            return self._error_formatter.format(record)
        return super().format(record)


class LoggingManager:
    """
    Manages logging configuration for the AD Group Sync application.

    Attaches a dated file handler (and optionally a console handler) to the
    root logger, or a NullHandler when logging is disabled.
    """

    def __init__(self):
        self.configured = False
        self.log_file = None
        self.handlers = []

    def setup_logging(self, config: LoggingConfig) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging section of the application configuration

        Raises:
            OSError: If the log directory or file cannot be created
        """
        if self.configured:
            return

        root_logger = logging.getLogger()
        root_logger.handlers.clear()

        if not config.enabled:
            self._add_handler(root_logger, logging.NullHandler())
            self.configured = True
            return

        level = logging.getLevelName(config.level.upper())
        root_logger.setLevel(level if isinstance(level, int) else logging.INFO)

        formatter = SyncLogFormatter()
        sensitive_filter = SensitiveDataFilter()

        os.makedirs(config.location, exist_ok=True)
        self.log_file = os.path.join(config.location, log_file_name())

        file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
        file_handler.setFormatter(formatter)
        file_handler.addFilter(sensitive_filter)
        self._add_handler(root_logger, file_handler)

        if config.console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(formatter)
            console_handler.addFilter(sensitive_filter)
            self._add_handler(root_logger, console_handler)

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.debug(f"Logging configured: level={config.level}, file={self.log_file}, "
                     f"console={config.console}")

    def _add_handler(self, root_logger: logging.Logger, handler: logging.Handler) -> None:
        root_logger.addHandler(handler)
        self.handlers.append(handler)

    def reset(self) -> None:
        """Detach and close the handlers installed by setup_logging."""
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self.configured = False
        self.log_file = None
        self.handlers = []


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: LoggingConfig) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration
    """
    _logging_manager.setup_logging(config)


def reset_logging() -> None:
    _logging_manager.reset()
