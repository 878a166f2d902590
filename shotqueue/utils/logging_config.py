"""
Logging Configuration Module

Root logger setup for ShotQueue: a rotating JSON-lines log file, an optional
console handler, and a privacy filter that keeps account names found in
screenshot paths out of the logs.
"""

import json
import logging
import logging.handlers
import re
import sys
import traceback
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'taskName', 'message',
    'exc_info', 'exc_text', 'stack_info',
}


class PrivacyFilter(logging.Filter):
    """Mask the user name in home-directory paths."""

    def __init__(self):
        super().__init__()
        self.sensitive_patterns = [
            (re.compile(r'([A-Za-z]:\\Users\\)[^\\\s"\']+'), r'\1[USER]'),
            (re.compile(r'(/Users/)[^/\s"\']+'), r'\1[USER]'),
            (re.compile(r'(/home/)[^/\s"\']+'), r'\1[USER]'),
            (re.compile(r'(AppData\\Local\\Temp\\)[^\\\s"\']+'), r'\1[TEMP]'),
        ]

    def sanitize(self, message: str) -> str:
        for pattern, replacement in self.sensitive_patterns:
            message = pattern.sub(replacement, message)
        return message

    def filter(self, record):
        if record.msg:
            try:
                message = record.getMessage()
            except (TypeError, ValueError):
                message = str(record.msg)
            record.msg = self.sanitize(message)
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info and record.exc_info[0]:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in _RESERVED_RECORD_KEYS:
                    log_data[f'extra_{key}'] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ApplicationLogger:
    """
    Application logging manager.

    Configures the root logger once; modules keep using
    ``logging.getLogger(__name__)``.
    """

    def __init__(
        self,
        app_name: str = "shotqueue",
        log_dir: Optional[Path] = None,
        log_level: str = "INFO",
        max_file_size: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        enable_console: bool = True,
        enable_json: bool = True,
        enable_privacy_filter: bool = True
    ):
        """
        Initialize application logger.

        Args:
            app_name: Application name for log file naming
            log_dir: Directory for log files (default: ./logs)
            log_level: Minimum log level to capture
            max_file_size: Maximum size of each log file in bytes
            backup_count: Number of backup log files to keep
            enable_console: Whether to log to console
            enable_json: Whether to use JSON formatting for file logs
            enable_privacy_filter: Whether to apply privacy filtering
        """
        self.app_name = app_name
        self.log_dir = Path(log_dir) if log_dir else Path("logs")
        self.log_level = self._level_from_name(log_level)
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console
        self.enable_json = enable_json
        self.enable_privacy_filter = enable_privacy_filter

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._configure_root_logger()

    @staticmethod
    def _level_from_name(level: str) -> int:
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            raise ValueError(f"Unknown log level: {level}")
        return value

    @property
    def log_file(self) -> Path:
        return self.log_dir / f"{self.app_name}.log"

    def _configure_root_logger(self) -> None:
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        self._add_file_handler(root_logger)

        if self.enable_console:
            self._add_console_handler(root_logger)

        if self.enable_privacy_filter:
            privacy_filter = PrivacyFilter()
            for handler in root_logger.handlers:
                handler.addFilter(privacy_filter)

    def _add_file_handler(self, logger: logging.Logger) -> None:
        file_handler = logging.handlers.RotatingFileHandler(
            self.log_file,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
            encoding='utf-8'
        )

        if self.enable_json:
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            )

        logger.addHandler(file_handler)

    def _add_console_handler(self, logger: logging.Logger) -> None:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        logger.addHandler(console_handler)

    def set_log_level(self, level: str) -> None:
        """
        Change the root log level.

        Args:
            level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        self.log_level = self._level_from_name(level)
        logging.getLogger().setLevel(self.log_level)

    def cleanup_old_logs(self, days_to_keep: int = 30) -> int:
        """
        Delete log files older than ``days_to_keep`` days.

        Returns:
            Number of files deleted
        """
        cutoff_date = datetime.now() - timedelta(days=days_to_keep)
        deleted_count = 0

        for log_file in self.log_dir.glob("*.log*"):
            try:
                file_time = datetime.fromtimestamp(log_file.stat().st_mtime)
                if file_time < cutoff_date:
                    log_file.unlink()
                    deleted_count += 1
            except OSError as e:
                logging.getLogger(__name__).error("Error deleting old log file %s: %s", log_file, e)

        return deleted_count

    def get_log_stats(self) -> Dict[str, Any]:
        """Size and count of the files in the log directory."""
        files = []
        for log_file in self.log_dir.glob("*.log*"):
            try:
                files.append((log_file.name, log_file.stat().st_size))
            except OSError:
                continue

        return {
            'log_directory': str(self.log_dir),
            'total_log_files': len(files),
            'total_size_bytes': sum(size for _, size in files),
            'log_files': sorted(name for name, _ in files)
        }


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: str = "INFO",
    enable_console: bool = True,
    enable_json: bool = True
) -> ApplicationLogger:
    """
    Set up application logging.

    Args:
        log_dir: Directory for log files
        log_level: Minimum log level
        enable_console: Whether to log to console
        enable_json: Whether to use JSON formatting

    Returns:
        Configured ApplicationLogger instance
    """
    return ApplicationLogger(
        log_dir=log_dir,
        log_level=log_level,
        enable_console=enable_console,
        enable_json=enable_json
    )
