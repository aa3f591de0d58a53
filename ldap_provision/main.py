"""
Command line orchestrator for LDAP Provision.

This module wires configuration, logging, the account store and the provisioning
service together and exposes them as the ``ldap-provision`` command.
"""

import sys
import json
import getpass
import logging
import argparse
import importlib
from datetime import datetime
from typing import Dict, Any, List, Optional

from ldap_provision.config import load_config, DirectoryConfig
from ldap_provision.directory_client import DirectoryClient
from ldap_provision.errors import (
    ConfigurationError,
    DirectoryError,
    DirectorySearchFailed,
    ProvisioningError,
)
from ldap_provision.hashing import PasswordHasher
from ldap_provision.logging_setup import setup_logging
from ldap_provision.models import AuthContext
from ldap_provision.notifications import (
    format_runtime,
    send_sync_failure,
    send_sync_summary,
    send_test_notification,
)
from ldap_provision.provisioning import ProvisioningService
from ldap_provision.stores.base import AccountStoreBase

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_BIND_FAILED = 3
EXIT_SEARCH_FAILED = 4
EXIT_UNEXPECTED = 5


class ProvisioningOrchestrator:
    """
    Runs provisioning operations from the command line.

    Handles configuration, logging, store loading, notifications and exit codes
    around the ProvisioningService.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize orchestrator.

        Args:
            config_path: Path to configuration file
        """
        self.config_path = config_path
        self.config = None
        self.store = None
        self.service = None

    def run(self) -> int:
        """
        Run a full directory synchronization.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self._prepare()
            logger.info("Starting LDAP Provision sync")

            result = self.service.sync_users(AuthContext.system())
            run = self.service.last_run

            self._log_sync_summary(result, run.runtime_seconds, run.result.invalid)
            self._send_success_notification(result, run.runtime_seconds, run.result.invalid)
            print(json.dumps(result))
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            print(f"Configuration error: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        except DirectoryError as e:
            logger.error(f"Directory error during {e.stage}: {e}")
            self._send_failure_notification(e.stage, str(e))
            return EXIT_SEARCH_FAILED if isinstance(e, DirectorySearchFailed) else EXIT_BIND_FAILED
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification('unexpected', str(e))
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def signup_user(self, email: str, password: str, name: Optional[str]) -> int:
        return self._run_single(lambda: self.service.signup_user(email, password, name))

    def signup_admin(self, email: str, password: str, name: str) -> int:
        return self._run_single(lambda: self.service.signup_admin(email, password, name))

    def list_accounts(self) -> int:
        return self._run_single(lambda: self.service.list_accounts(AuthContext.system()))

    def _run_single(self, operation) -> int:
        try:
            self._prepare()
            print(json.dumps(operation(), indent=2))
            return EXIT_OK
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            print(f"Configuration error: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        except DirectoryError as e:
            logger.error(f"Directory error during {e.stage}: {e}")
            print(f"Directory error: {e}", file=sys.stderr)
            return EXIT_SEARCH_FAILED if isinstance(e, DirectorySearchFailed) else EXIT_BIND_FAILED
        except ProvisioningError as e:
            logger.error(f"Operation failed: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILED
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            print(f"Unexpected error: {e}", file=sys.stderr)
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def _prepare(self):
        self._load_configuration()
        setup_logging(self.config.get('logging', {}))
        self.store = self._load_store_module(self.config['account_store'])
        self.service = self._build_service(self.store)

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _build_service(self, store: AccountStoreBase) -> ProvisioningService:
        directory_config = DirectoryConfig.from_dict(
            self.config['directory'],
            self.config.get('error_handling', {})
        )
        hasher = PasswordHasher(self.config['hashing']['work_factor'])
        return ProvisioningService(
            directory_config,
            store,
            hasher,
            public_sync_enabled=self.config['provisioning']['public_sync_enabled'],
            directory_factory=DirectoryClient
        )

    def _load_store_module(self, store_config: Dict[str, Any]) -> AccountStoreBase:
        """Dynamically load the account store module and create the store."""
        module_name = store_config['module']

        try:
            store_module = importlib.import_module(f"ldap_provision.stores.{module_name}")
        except ImportError as e:
            raise ConfigurationError(f"Failed to import account store module {module_name}: {e}")

        store_class = None
        for attr_name in dir(store_module):
            attr = getattr(store_module, attr_name)
            if (isinstance(attr, type) and
                    issubclass(attr, AccountStoreBase) and
                    attr is not AccountStoreBase):
                store_class = attr
                break

        if not store_class:
            raise ConfigurationError(f"No AccountStoreBase subclass found in module {module_name}")

        return store_class(store_config)

    def _log_sync_summary(self, result: Dict[str, int], runtime_seconds: float, invalid: int):
        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {format_runtime(runtime_seconds)}")
        logger.info(f"Accounts created: {result['created']}")
        logger.info(f"Accounts skipped: {result['skipped']}")
        logger.info(f"Invalid directory entries: {invalid}")

    def _send_failure_notification(self, stage: str, error_message: str):
        if not self.config:
            return
        try:
            send_sync_failure(stage, error_message, self.config.get('notifications', {}), trigger='cli')
        except Exception as e:
            logger.error(f"Failed to send failure notification: {e}")

    def _send_success_notification(self, result: Dict[str, int], runtime_seconds: float, invalid: int):
        try:
            send_sync_summary(result, runtime_seconds, self.config.get('notifications', {}), invalid)
        except Exception as e:
            logger.error(f"Failed to send success notification: {e}")

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration, directory bind, account store and notification settings.

        Returns:
            ``{'status': 'healthy'|'unhealthy', 'timestamp': ..., 'checks': {name: {...}}}``
        """
        checks: Dict[str, Dict[str, str]] = {}

        def record(name: str, status: str, message: str):
            checks[name] = {'status': status, 'message': message}

        try:
            self._load_configuration()
            record('configuration', 'pass', f"Loaded {self.config_path or 'default configuration'}")
        except ConfigurationError as e:
            record('configuration', 'fail', f"Configuration error: {e}")
            return self._health_report(checks)

        # Single attempt, no waiting
        directory_config = DirectoryConfig.from_dict(
            self.config['directory'], {'max_retries': 1, 'retry_wait_seconds': 0}
        )
        try:
            with DirectoryClient(directory_config) as client:
                client.bind()
            record('directory', 'pass', f"Bound to {directory_config.endpoint}")
        except DirectoryError as e:
            record('directory', 'fail', f"Directory {e.stage} failed: {e}")

        try:
            with self._load_store_module(self.config['account_store']) as store:
                count = len(store.list_accounts())
            record('account_store', 'pass', f"Account store reachable ({count} accounts)")
        except ProvisioningError as e:
            record('account_store', 'fail', f"Account store error: {e}")

        notifications = self.config.get('notifications', {})
        if not notifications.get('enable_email', False):
            record('notifications', 'skip', 'Email notifications disabled')
        else:
            missing = [key for key in ('smtp_server', 'email_from', 'email_to') if not notifications.get(key)]
            if missing:
                record('notifications', 'fail', f"Missing notification settings: {', '.join(missing)}")
            else:
                record('notifications', 'pass', 'Email notification settings complete')

        return self._health_report(checks)

    @staticmethod
    def _health_report(checks: Dict[str, Dict[str, str]]) -> Dict[str, Any]:
        healthy = all(check['status'] != 'fail' for check in checks.values())
        return {
            'status': 'healthy' if healthy else 'unhealthy',
            'timestamp': datetime.now().isoformat(),
            'checks': checks,
        }

    def _cleanup(self):
        if self.store:
            self.store.close()
            self.store = None


def _read_password(args) -> str:
    if args.password:
        return args.password
    return getpass.getpass(f"Password for {args.email}: ")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Provision local accounts from an LDAP directory')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')
    parser.add_argument('command', nargs='?', default='sync',
                        choices=['sync', 'signup-user', 'signup-admin', 'list-accounts'],
                        help='Operation to run (default: sync)')
    parser.add_argument('--email', help='Account email for signup commands')
    parser.add_argument('--name', help='Account name for signup commands')
    parser.add_argument('--password', help='Account password (prompted when omitted)')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    orchestrator = ProvisioningOrchestrator(config_path=args.config)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(EXIT_OK if health_status['status'] == 'healthy' else EXIT_FAILED)

    if args.test_email:
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(EXIT_CONFIG_ERROR)
        if send_test_notification(orchestrator.config.get('notifications', {})):
            print("Test email sent successfully")
            sys.exit(EXIT_OK)
        print("Failed to send test email")
        sys.exit(EXIT_FAILED)

    if args.command in ('signup-user', 'signup-admin'):
        if not args.email:
            parser.error(f"{args.command} requires --email")
        if args.command == 'signup-admin' and not args.name:
            parser.error("signup-admin requires --name")
        password = _read_password(args)
        if args.command == 'signup-user':
            sys.exit(orchestrator.signup_user(args.email, password, args.name))
        sys.exit(orchestrator.signup_admin(args.email, password, args.name))

    if args.command == 'list-accounts':
        sys.exit(orchestrator.list_accounts())

    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
