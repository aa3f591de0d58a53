"""
Configuration for LDAP Provision.

Settings live in one YAML file. Secrets can be supplied through environment
variables instead, and every optional section is filled with defaults so the
rest of the package can index it directly.
"""

import os
import yaml
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

from ldap_provision.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_USER_BASE_DN = 'ou=users,dc=example,dc=org'
DEFAULT_OBJECT_FILTER = '(objectClass=inetOrgPerson)'
DEFAULT_FALLBACK_CREDENTIAL = 'changeme'
DEFAULT_WORK_FACTOR = 10


@dataclass(frozen=True)
class DirectoryConfig:
    """Connection and search settings for the directory service."""

    endpoint: str
    bind_dn: str
    bind_secret: str
    user_base_dn: str = DEFAULT_USER_BASE_DN
    search_base_dn: Optional[str] = None
    object_filter: str = DEFAULT_OBJECT_FILTER
    fallback_credential: str = DEFAULT_FALLBACK_CREDENTIAL
    use_ssl: bool = False
    start_tls: bool = False
    verify_ssl: bool = True
    ca_cert_file: Optional[str] = None
    connection_timeout: int = 10
    receive_timeout: int = 10
    page_size: int = 500
    max_retries: int = 3
    retry_wait_seconds: float = 5

    @property
    def lookup_base_dn(self) -> str:
        """Base DN for single-entry lookups (the domain root by default)."""
        if self.search_base_dn:
            return self.search_base_dn
        dc_parts = [part.strip() for part in self.user_base_dn.split(',')
                    if part.strip().lower().startswith('dc=')]
        return ','.join(dc_parts) or self.user_base_dn

    @classmethod
    def from_dict(cls, config: Dict[str, Any], error_config: Optional[Dict[str, Any]] = None) -> 'DirectoryConfig':
        error_config = error_config or {}
        endpoint = config['endpoint']
        return cls(
            endpoint=endpoint,
            bind_dn=config['bind_dn'],
            bind_secret=config['bind_secret'],
            user_base_dn=config.get('user_base_dn') or DEFAULT_USER_BASE_DN,
            search_base_dn=config.get('search_base_dn'),
            object_filter=config.get('object_filter') or DEFAULT_OBJECT_FILTER,
            fallback_credential=config.get('fallback_credential') or DEFAULT_FALLBACK_CREDENTIAL,
            use_ssl=config.get('use_ssl', endpoint.lower().startswith('ldaps://')),
            start_tls=config.get('start_tls', False),
            verify_ssl=config.get('verify_ssl', True),
            ca_cert_file=config.get('ca_cert_file'),
            connection_timeout=config.get('connection_timeout', 10),
            receive_timeout=config.get('receive_timeout', 10),
            page_size=config.get('page_size', 500),
            max_retries=error_config.get('max_retries', 3),
            retry_wait_seconds=error_config.get('retry_wait_seconds', 5),
        )



SECTION_DEFAULTS = {
    'directory': {
        'user_base_dn': DEFAULT_USER_BASE_DN,
        'object_filter': DEFAULT_OBJECT_FILTER,
        'fallback_credential': DEFAULT_FALLBACK_CREDENTIAL,
    },
    'account_store': {
        'module': 'sqlite_store',
        'database_path': 'accounts.db',
    },
    'hashing': {
        'work_factor': DEFAULT_WORK_FACTOR,
    },
    'provisioning': {
        'public_sync_enabled': True,
    },
    'logging': {
        'level': 'INFO',
        'log_dir': 'logs',
        'rotation': 'daily',
        'retention_days': 7,
    },
    'error_handling': {
        'max_retries': 3,
        'retry_wait_seconds': 5,
    },
    'notifications': {
        'enable_email': False,
        'email_on_failure': True,
        'email_on_success': False,
        'smtp_port': 587,
        'smtp_tls': True,
    },
}


class ConfigLoader:
    """Reads the YAML configuration, overlays secrets from the environment and checks it."""

    # Secrets that may come from the environment instead of the file
    ENV_OVERRIDES = {
        'directory.bind_secret': 'DIRECTORY_BIND_SECRET',
        'directory.fallback_credential': 'DIRECTORY_FALLBACK_CREDENTIAL',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: YAML file to read; falls back to $CONFIG_PATH, then config.yaml
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config: Dict[str, Any] = {}

    def load(self) -> Dict[str, Any]:
        """
        Read, override, validate and complete the configuration.

        Returns:
            The configuration with every section present

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        self.config = self._read_file()
        self._apply_env_overrides()
        self._validate()
        for section, defaults in SECTION_DEFAULTS.items():
            self._merge_defaults(section, defaults)

        if self.config['provisioning']['public_sync_enabled']:
            logger.warning("Unauthenticated directory sync trigger is enabled "
                           "(provisioning.public_sync_enabled)")

        logger.info(f"Configuration loaded from {self.config_path}")
        return self.config

    def _read_file(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse {self.config_path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")
        return data

    def _apply_env_overrides(self):
        for dotted_key, env_var in self.ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if not value:
                continue
            section_name, key = dotted_key.split('.', 1)
            if self.config.get(section_name) is None:
                self.config[section_name] = {}
            self.config[section_name][key] = value
            logger.debug(f"{dotted_key} taken from ${env_var}")

    def _validate(self):
        """Collect every problem so the operator can fix them in one pass."""
        errors: List[str] = []

        directory = self.config.get('directory') or {}
        for field_name in ('endpoint', 'bind_dn', 'bind_secret'):
            if not directory.get(field_name):
                errors.append(f"Missing required directory field: {field_name}")

        endpoint = directory.get('endpoint') or ''
        if endpoint and not endpoint.lower().startswith(('ldap://', 'ldaps://')):
            errors.append(f"Directory endpoint must be an ldap:// or ldaps:// URL: {endpoint}")

        object_filter = directory.get('object_filter')
        if object_filter and not (object_filter.startswith('(') and object_filter.endswith(')')):
            errors.append(f"Directory object_filter must be a parenthesised LDAP filter: {object_filter}")

        work_factor = (self.config.get('hashing') or {}).get('work_factor')
        if work_factor is not None and (isinstance(work_factor, bool) or not isinstance(work_factor, int)
                                        or not 4 <= work_factor <= 31):
            errors.append(f"hashing.work_factor must be an integer between 4 and 31, got {work_factor!r}")

        public_sync = (self.config.get('provisioning') or {}).get('public_sync_enabled')
        if public_sync is not None and not isinstance(public_sync, bool):
            errors.append(f"provisioning.public_sync_enabled must be true or false, got {public_sync!r}")

        if errors:
            raise ConfigurationError("Invalid configuration:\n" + "\n".join(f"  - {error}" for error in errors))

    def _merge_defaults(self, section: str, defaults: Dict[str, Any]):
        if self.config.get(section) is None:
            self.config[section] = {}
        for key, value in defaults.items():
            self.config[section].setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load and validate the configuration at ``config_path``."""
    return ConfigLoader(config_path).load()
