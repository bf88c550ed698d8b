"""
Logging setup and configuration for Directory Sync.

This module configures the process-wide logging: a rotating log file, an
optional console stream for container output, and a filter that keeps
credentials out of both.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List
from datetime import datetime, timedelta


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'smtp_password', 'token', 'secret',
        'client_secret', 'clientSecret', 'access_token', 'refresh_token',
        'private_key', 'api_key', 'credential', 'pwd'
    ]

    def __init__(self, name: str = ''):
        super().__init__(name)
        self._patterns = []
        for keyword in self.SENSITIVE_KEYWORDS:
            # key=value
            self._patterns.append(
                (re.compile(rf'({keyword}\s*=\s*)[^\s,}}\]]+', re.IGNORECASE), r'\1****')
            )
            # "key": "value" (JSON and Python reprs)
            self._patterns.append(
                (re.compile(rf'(["\']{keyword}["\']\s*:\s*["\'])[^"\']*(["\'])', re.IGNORECASE), r'\1****\2')
            )
        self._patterns.append(
            (re.compile(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE), r'\1****')
        )

    def scrub(self, message: str) -> str:
        """Return message with every sensitive value masked."""
        for pattern, replacement in self._patterns:
            message = pattern.sub(replacement, message)
        return message

    def filter(self, record):
        """Filter out sensitive data from log records."""
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)

        record.msg = self.scrub(message)
        record.args = None
        return True


class LoggingManager:
    """
    Manages logging configuration for the Directory Sync application.

    Provides file-based logging with rotation, retention policies, and
    container-friendly console output.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = logging_config.get('level', 'INFO').upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = logging_config.get('console_level', 'INFO').upper()

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(threadName)s %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(rotation)
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(detailed_formatter)
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.INFO))
            console_handler.setFormatter(console_formatter)
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        # The Google client logs every discovery and HTTP call at INFO
        logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.ERROR)
        logging.getLogger('googleapiclient.discovery').setLevel(logging.WARNING)

        self._cleanup_old_logs()

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.info(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                    f"retention={self.retention_days} days, console={console_enabled}")

    def _ensure_log_directory(self) -> None:
        """Ensure the log directory exists."""
        if self.log_dir and not os.path.exists(self.log_dir):
            try:
                os.makedirs(self.log_dir, exist_ok=True)
            except OSError as e:
                print(f"Warning: Could not create log directory {self.log_dir}: {e}")
                print("Falling back to current directory for logs")
                self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        """
        Create appropriate file handler based on rotation setting.

        Args:
            rotation: Rotation setting ('daily', 'midnight', or 'none')

        Returns:
            Configured logging handler
        """
        log_file = os.path.join(self.log_dir, 'app.log')

        if rotation.lower() in ('daily', 'midnight'):
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def _cleanup_old_logs(self) -> None:
        """Remove rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)

        for log_file in self.get_log_files():
            if log_file.endswith('app.log'):
                continue
            try:
                file_time = datetime.fromtimestamp(os.path.getmtime(log_file))
                if file_time < cutoff_date:
                    os.remove(log_file)
            except OSError as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> List[str]:
        """Return current and rotated log file paths."""
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, 'app.log*')))


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


class AuditLogger:
    """Logger for changes made to the registry and for authentication events."""

    def __init__(self):
        self.logger = logging.getLogger('audit')

    def log_authentication(self, system: str, principal: str, success: bool):
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Authentication {status}: {system} principal={principal}")

    def log_group_change(self, action: str, group_name: str, external_id: str, success: bool):
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Group {action} {status}: name='{group_name}' external_id={external_id}")


# Global audit logger instance
audit_logger = AuditLogger()
