"""
Logging setup and configuration for AD Cloud Group Sync.

This module provides centralized logging configuration including file rotation,
retention policies, console output, a SUCCESS level between INFO and WARNING,
and an audit logger for membership changes.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, Mapping
from datetime import datetime, timedelta

SUCCESS = 25
logging.addLevelName(SUCCESS, 'SUCCESS')


def log_success(logger: logging.Logger, message: str, *args, **kwargs):
    """Log a message at the SUCCESS level."""
    if logger.isEnabledFor(SUCCESS):
        logger.log(SUCCESS, message, *args, **kwargs)


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'smtp_password', 'certificate_password',
        'token', 'secret', 'client_secret', 'access_token', 'refresh_token',
        'authorization', 'credential', 'private_key', 'pwd'
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if hasattr(record, 'msg'):
            msg = str(record.msg)

            # key=value
            for keyword in self.SENSITIVE_KEYWORDS:
                pattern = rf'({keyword}\s*=\s*)[^\s,}}\]]+(\s|,|$)'
                msg = re.sub(pattern, r'\1****\2', msg, flags=re.IGNORECASE)

            # "key": "value" and "key": value
            for keyword in self.SENSITIVE_KEYWORDS:
                quoted = rf'("{keyword}"\s*:\s*")[^"]*(")'
                msg = re.sub(quoted, r'\1****\2', msg, flags=re.IGNORECASE)
                unquoted = rf'("{keyword}"\s*:\s*)([^",}}\s]+)(\s*[,}}\]])'
                msg = re.sub(unquoted, r'\1****\3', msg, flags=re.IGNORECASE)

            # Authorization: Bearer <token>
            msg = re.sub(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*', r'\1****', msg, flags=re.IGNORECASE)

            record.msg = msg

        return True


class LoggingManager:
    """
    Manages logging configuration for the application.

    Provides file-based logging with rotation and retention, and console
    output for interactive and container runs.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Mapping[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = str(logging_config.get('level', 'INFO')).upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = str(logging_config.get('console_level', 'INFO')).upper()

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(_level_value(log_level))
        root_logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(rotation)
        file_handler.setLevel(_level_value(log_level))
        file_handler.setFormatter(detailed_formatter)
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(_level_value(console_level))
            console_handler.setFormatter(console_formatter)
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        # HTTP and auth libraries are noisy at DEBUG
        logging.getLogger('msal').setLevel(logging.WARNING)
        logging.getLogger('ldap3').setLevel(logging.WARNING)

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

        if str(rotation).lower() in ['daily', 'midnight']:
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
        """Clean up log files older than retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)
        log_files = glob.glob(os.path.join(self.log_dir, 'app.log*'))

        for log_file in log_files:
            if log_file.endswith('app.log'):
                continue
            try:
                file_time = datetime.fromtimestamp(os.path.getmtime(log_file))
                if file_time < cutoff_date:
                    os.remove(log_file)
            except (OSError, ValueError) as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> list:
        """Return current log file paths."""
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, 'app.log*')))

    def reset(self) -> None:
        """Forget the current configuration so setup_logging can run again."""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        self.configured = False


def _level_value(name: str) -> int:
    if name == 'SUCCESS':
        return SUCCESS
    return getattr(logging, name, logging.INFO)


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Mapping[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


def reset_logging() -> None:
    """Tear down handlers installed by setup_logging."""
    _logging_manager.reset()


def cleanup_logs() -> None:
    """Force cleanup of old log files."""
    _logging_manager._cleanup_old_logs()


class AuditLogger:
    """Records every membership change applied to a cloud group."""

    def __init__(self):
        self.logger = logging.getLogger('group_sync.audit')

    def log_membership_change(self, operation: str, identity: str, group: str,
                              success: bool, detail: str = ''):
        """Log one add/remove attempt for the audit trail."""
        if success:
            log_success(self.logger, f"Membership {operation} SUCCESS: user={identity} group={group}")
        else:
            message = f"Membership {operation} FAILURE: user={identity} group={group}"
            if detail:
                message += f" - {detail}"
            self.logger.error(message)

    def log_mapping_aborted(self, mapping: str, reason: str):
        self.logger.error(f"Mapping aborted: {mapping} - {reason}")


# Global audit logger instance
audit_logger = AuditLogger()


def get_logging_stats() -> Dict[str, Any]:
    """
    Get statistics about current logging setup.

    Returns:
        Dictionary with logging statistics
    """
    log_files = _logging_manager.get_log_files()
    total_size = 0
    for log_file in log_files:
        try:
            total_size += os.path.getsize(log_file)
        except OSError:
            pass

    return {
        'configured': _logging_manager.configured,
        'log_directory': _logging_manager.log_dir,
        'retention_days': _logging_manager.retention_days,
        'log_files_count': len(log_files),
        'total_size_bytes': total_size
    }
