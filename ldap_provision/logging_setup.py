"""
Logging setup and configuration for LDAP Provision.

The root logger gets a file handler (rotated at midnight unless rotation is
off) and an optional console handler. Both carry a filter that masks
credentials before anything is written.
"""

import os
import re
import glob
import time
import logging
import logging.handlers
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class SensitiveDataFilter(logging.Filter):
    """Masks credentials and password hashes in log messages."""

    SENSITIVE_KEYWORDS = [
        'userPassword', 'password', 'bind_secret', 'bind_password', 'fallback_credential',
        'credential_material', 'smtp_password', 'secret', 'token', 'pwd'
    ]

    # bcrypt modular crypt format, e.g. $2b$10$<53 chars>
    BCRYPT_PATTERN = re.compile(r'\$2[abxy]?\$\d{2}\$[./A-Za-z0-9]{53}')

    def __init__(self, name: str = ''):
        super().__init__(name)
        self._rules = []
        for keyword in self.SENSITIVE_KEYWORDS:
            # key=value and key: value
            self._rules.append((re.compile(rf'({keyword}\s*[=:]\s*)(?!["\'\[])[^\s,}}\]]+', re.IGNORECASE),
                                r'\1****'))
            # "key": "value", key="value" and 'key': 'value'
            self._rules.append((re.compile(rf'(["\']?{keyword}["\']?\s*[=:]\s*)(["\'])[^"\']*\2', re.IGNORECASE),
                                r'\1\2****\2'))
            # 'key': ['value', ...] as printed for raw directory entries
            self._rules.append((re.compile(rf'(["\']{keyword}["\']\s*:\s*)\[[^\]]*\]', re.IGNORECASE),
                                r'\1[****]'))
        self._rules.append((self.BCRYPT_PATTERN, '****'))

    def filter(self, record):
        # Mask the rendered message so %-style arguments are covered too
        msg = record.getMessage()
        for pattern, replacement in self._rules:
            msg = pattern.sub(replacement, msg)
        record.msg = msg
        record.args = None
        return True


@dataclass(frozen=True)
class LogSettings:
    """The ``logging`` section of the configuration."""

    level: str = 'INFO'
    log_dir: str = 'logs'
    rotation: str = 'daily'
    retention_days: int = 7
    console_output: bool = True
    console_level: str = 'WARNING'

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'LogSettings':
        config = config or {}
        return cls(
            level=str(config.get('level', 'INFO')).upper(),
            log_dir=config.get('log_dir', 'logs'),
            rotation=str(config.get('rotation', 'daily')).lower(),
            retention_days=config.get('retention_days', 7),
            console_output=config.get('console_output', True),
            console_level=str(config.get('console_level', 'WARNING')).upper(),
        )

    @property
    def numeric_level(self) -> int:
        return getattr(logging, self.level, logging.INFO)


class LoggingManager:
    """
    Configures the root logger once per process.

    ``reset()`` allows reconfiguration, which tests use between runs.
    """

    LOG_FILE = 'provision.log'
    FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
    CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'

    def __init__(self):
        self.configured = False
        self.settings: Optional[LogSettings] = None

    def setup_logging(self, config: Optional[Dict[str, Any]]) -> None:
        """
        Install handlers on the root logger according to ``config``.

        Args:
            config: The ``logging`` configuration section
        """
        if self.configured:
            return

        settings = LogSettings.from_config(config)
        log_dir = self._usable_log_dir(settings.log_dir)

        root_logger = logging.getLogger()
        root_logger.setLevel(settings.numeric_level)
        root_logger.handlers.clear()
        for handler in self._build_handlers(settings, log_dir):
            root_logger.addHandler(handler)

        removed = self._prune_rotated_logs(log_dir, settings.retention_days)

        self.settings = settings
        self.configured = True
        logging.getLogger(__name__).info(
            f"Logging configured: level={settings.level}, dir={log_dir}, "
            f"retention={settings.retention_days} days, console={settings.console_output}, "
            f"pruned={removed}"
        )

    def _build_handlers(self, settings: LogSettings, log_dir: str) -> List[logging.Handler]:
        sensitive_filter = SensitiveDataFilter()
        log_path = os.path.join(log_dir, self.LOG_FILE)

        if settings.rotation in ('daily', 'midnight'):
            file_handler = logging.handlers.TimedRotatingFileHandler(
                log_path, when='midnight', backupCount=settings.retention_days, encoding='utf-8'
            )
            file_handler.suffix = '%Y-%m-%d'
        else:
            file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setLevel(settings.numeric_level)
        file_handler.setFormatter(logging.Formatter(self.FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        file_handler.addFilter(sensitive_filter)
        handlers = [file_handler]

        if settings.console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, settings.console_level, logging.WARNING))
            console_handler.setFormatter(logging.Formatter(self.CONSOLE_FORMAT, datefmt='%H:%M:%S'))
            console_handler.addFilter(sensitive_filter)
            handlers.append(console_handler)

        return handlers

    @staticmethod
    def _usable_log_dir(log_dir: str) -> str:
        if not log_dir:
            return '.'
        try:
            os.makedirs(log_dir, exist_ok=True)
        except OSError as e:
            # The logger is not configured yet, so report on stdout
            print(f"Warning: cannot create log directory {log_dir} ({e}), logging to current directory")
            return '.'
        return log_dir

    def _prune_rotated_logs(self, log_dir: str, retention_days: int) -> int:
        """Delete rotated files older than the retention period and return how many went."""
        if retention_days <= 0:
            return 0

        cutoff = time.time() - retention_days * 86400
        removed = 0
        for rotated in glob.glob(os.path.join(log_dir, self.LOG_FILE + '.*')):
            try:
                if os.path.getmtime(rotated) < cutoff:
                    os.remove(rotated)
                    removed += 1
            except OSError as e:
                print(f"Warning: cannot remove old log file {rotated}: {e}")
        return removed

    def reset(self) -> None:
        self.configured = False
        self.settings = None


_logging_manager = LoggingManager()


def setup_logging(config: Optional[Dict[str, Any]]) -> None:
    """Configure process-wide logging from the ``logging`` config section."""
    _logging_manager.setup_logging(config)


class SecurityAuditLogger:
    """Audit trail for directory binds, sync triggers and account creation."""

    def __init__(self):
        self.logger = logging.getLogger('security')

    def log_bind_attempt(self, endpoint: str, bind_dn: str, success: bool):
        outcome = "succeeded" if success else "FAILED"
        self.logger.info(f"Directory bind {outcome}: {endpoint} dn={bind_dn}")

    def log_sync_trigger(self, trigger: str, user_id: str = None):
        self.logger.info(f"Directory sync triggered: {trigger} by={user_id or 'anonymous'}")

    def log_account_created(self, email: str, storage_label: str, is_admin: bool, source: str):
        role = "admin" if is_admin else "user"
        self.logger.info(f"Account created: email={email} role={role} label={storage_label} source={source}")

    def log_permission_denied(self, operation: str, user_id: str = None):
        self.logger.warning(f"Permission denied: {operation} by={user_id or 'anonymous'}")


security_logger = SecurityAuditLogger()
