"""
LogManager Component
Responsible for configuring logging, handling log rotation and keeping a
dedicated log of healing events.
"""

import gzip
import logging
import os
import shutil
import sys
from typing import Dict, Any, Optional, Union
from logging.handlers import RotatingFileHandler

logger = logging.getLogger(__name__)

class GzipRotatingFileHandler(RotatingFileHandler):
    """
    Extended RotatingFileHandler that compresses rotated logs with gzip
    """

    def doRollover(self):
        """Compress the old log files after rotation"""
        super().doRollover()

        if self.backupCount > 0:
            for i in range(1, self.backupCount + 1):
                source = f"{self.baseFilename}.{i}"
                target = f"{source}.gz"

                if os.path.exists(source):
                    with open(source, 'rb') as f_in:
                        with gzip.open(target, 'wb') as f_out:
                            shutil.copyfileobj(f_in, f_out)
                    os.remove(source)


class LevelCounter(logging.Filter):
    """Counts records by level without filtering any of them"""

    def __init__(self):
        super().__init__()
        self.counts = {
            'DEBUG': 0,
            'INFO': 0,
            'WARNING': 0,
            'ERROR': 0,
            'CRITICAL': 0
        }

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelname in self.counts:
            self.counts[record.levelname] += 1
        return True


class LogManager:
    """
    LogManager handles:
    - Console, general and error log handlers
    - Log file rotation and compression
    - A dedicated 'healing' logger for remediation events
    """

    def __init__(self, log_dir: str = './logs', log_level: Union[str, int] = logging.INFO):
        """
        Initialize the LogManager

        Args:
            log_dir (str): Directory for log files
            log_level (Union[str, int]): Root log level
        """
        self.log_dir = log_dir
        self.max_file_size = 10 * 1024 * 1024  # 10 MB
        self.backup_count = 5
        self.log_level = self._to_level(log_level) or logging.INFO
        self.log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        self.date_format = '%Y-%m-%d %H:%M:%S'

        self.handlers: Dict[str, logging.Handler] = {}
        self.root_logger = logging.getLogger()
        self.healing_logger = logging.getLogger('healing')
        self.counter = LevelCounter()

    @staticmethod
    def _to_level(level: Union[str, int]) -> Optional[int]:
        if isinstance(level, int):
            return level
        numeric_level = getattr(logging, str(level).upper(), None)
        return numeric_level if isinstance(numeric_level, int) else None

    def setup(self, console: bool = True, files: bool = True):
        """
        Set up logging configuration

        Args:
            console (bool): Attach a stdout handler
            files (bool): Attach rotating file handlers
        """
        formatter = logging.Formatter(self.log_format, self.date_format)
        self.root_logger.setLevel(self.log_level)

        for handler in list(self.root_logger.handlers):
            self.root_logger.removeHandler(handler)

        if console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            console_handler.addFilter(self.counter)
            self.root_logger.addHandler(console_handler)
            self.handlers['console'] = console_handler

        if files:
            os.makedirs(self.log_dir, exist_ok=True)

            file_handler = GzipRotatingFileHandler(
                os.path.join(self.log_dir, 'healer.log'),
                maxBytes=self.max_file_size,
                backupCount=self.backup_count
            )
            file_handler.setFormatter(formatter)
            if not console:
                file_handler.addFilter(self.counter)
            self.root_logger.addHandler(file_handler)
            self.handlers['general'] = file_handler

            error_handler = GzipRotatingFileHandler(
                os.path.join(self.log_dir, 'error.log'),
                maxBytes=self.max_file_size,
                backupCount=self.backup_count
            )
            error_handler.setFormatter(formatter)
            error_handler.setLevel(logging.ERROR)
            self.root_logger.addHandler(error_handler)
            self.handlers['error'] = error_handler

            healing_handler = GzipRotatingFileHandler(
                os.path.join(self.log_dir, 'healing.log'),
                maxBytes=self.max_file_size,
                backupCount=self.backup_count
            )
            healing_handler.setFormatter(formatter)
            self.healing_logger.addHandler(healing_handler)
            self.handlers['healing'] = healing_handler

        logger.info(f"Logging setup complete (level: {logging.getLevelName(self.log_level)})")

    def set_log_level(self, level: Union[str, int]):
        """
        Set the log level

        Args:
            level (Union[str, int]): Log level name or value
        """
        numeric_level = self._to_level(level)
        if numeric_level is None:
            logger.warning(f"Invalid log level: {level}")
            return

        self.root_logger.setLevel(numeric_level)
        self.log_level = numeric_level
        for name in ('console', 'general'):
            if name in self.handlers:
                self.handlers[name].setLevel(numeric_level)

        logger.info(f"Log level set to {logging.getLevelName(numeric_level)}")

    def get_log_stats(self) -> Dict[str, Any]:
        """
        Get logging statistics

        Returns:
            Dict[str, Any]: Message counts and handler files
        """
        return {
            'message_counts': dict(self.counter.counts),
            'log_level': logging.getLevelName(self.log_level),
            'files': {
                name: handler.baseFilename
                for name, handler in self.handlers.items()
                if isinstance(handler, logging.FileHandler)
            }
        }


def log_healing_event(site_id: str, execution_id: str, message: str, level: int = logging.INFO):
    """
    Log a remediation event to the dedicated healing logger

    Args:
        site_id (str): Site identifier
        execution_id (str): Execution identifier
        message (str): Event message
        level (int): Log level
    """
    logging.getLogger('healing').log(level, f"[site {site_id}] [execution {execution_id}] {message}")
