"""
Provisioning entry points.

The administrative and public sync triggers differ only in their authorization
gate; both call the same internal sync routine. Direct signup and admin signup
create a single account each.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from ldap_provision.config import DirectoryConfig
from ldap_provision.directory_client import DirectoryClient, PERSON_ATTRIBUTES
from ldap_provision.errors import DirectoryError, DirectoryRecordNotFound, InvalidDirectoryRecord, PermissionDenied
from ldap_provision.hashing import PasswordHasher
from ldap_provision.logging_setup import security_logger
from ldap_provision.models import ADMIN_USER_CREATE, ADMIN_USER_READ, AuthContext, DirectoryRecord, SyncResult
from ldap_provision.normalizer import RecordNormalizer, attribute_map
from ldap_provision.reconciler import (
    Reconciler,
    generate_storage_label,
    ADMIN_LABEL_PREFIX,
    USER_LABEL_PREFIX,
)
from ldap_provision.stores.base import AccountStoreBase

logger = logging.getLogger(__name__)


class RunState(Enum):
    IDLE = 'idle'
    BINDING = 'binding'
    SEARCHING = 'searching'
    RECONCILING = 'reconciling'
    COMPLETED = 'completed'
    FAILED = 'failed'


@dataclass
class SyncRun:
    """Progress of one synchronization run."""

    trigger: str
    state: RunState = RunState.IDLE
    failed_stage: Optional[str] = None
    result: Optional[SyncResult] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    history: List[RunState] = field(default_factory=list)
    records_seen: int = 0

    def transition(self, state: RunState):
        logger.debug(f"Sync run ({self.trigger}): {self.state.value} -> {state.value}")
        self.history.append(state)
        self.state = state

    @property
    def runtime_seconds(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class ProvisioningService:
    """
    Directory sync and signup operations over one account store.

    A new directory session is opened for every operation through
    ``directory_factory`` so runs never share a connection.
    """

    def __init__(self, directory_config: DirectoryConfig, store: AccountStoreBase,
                 hasher: PasswordHasher, public_sync_enabled: bool = True,
                 directory_factory: Optional[Callable[[DirectoryConfig], Any]] = None):
        self.directory_config = directory_config
        self.store = store
        self.hasher = hasher
        self.public_sync_enabled = public_sync_enabled
        self.directory_factory = directory_factory or DirectoryClient
        self.last_run: Optional[SyncRun] = None

    # Sync triggers

    def sync_users(self, auth: AuthContext) -> Dict[str, int]:
        """Administrative trigger: requires an admin holding admin.user.create."""
        self._require(auth, ADMIN_USER_CREATE, admin=True, operation='sync-users')
        security_logger.log_sync_trigger('admin', auth.user_id)
        return self._sync_users_internal('admin').to_dict()

    def sync_users_public(self) -> Dict[str, int]:
        """Unauthenticated trigger for unattended, scheduled synchronization."""
        if not self.public_sync_enabled:
            security_logger.log_permission_denied('sync-users-public')
            raise PermissionDenied("Public directory sync is disabled")
        logger.warning("Directory sync started through the unauthenticated trigger")
        security_logger.log_sync_trigger('public')
        return self._sync_users_internal('public').to_dict()

    def _sync_users_internal(self, trigger: str) -> SyncResult:
        run = SyncRun(trigger=trigger, start_time=datetime.now())
        self.last_run = run
        logger.info("Starting LDAP users synchronization")

        directory = self.directory_factory(self.directory_config)
        try:
            run.transition(RunState.BINDING)
            directory.bind()
            logger.info("Directory connection established")

            run.transition(RunState.SEARCHING)
            entries = directory.search_all(
                self.directory_config.user_base_dn,
                self.directory_config.object_filter,
                PERSON_ATTRIBUTES
            )
            normalizer = RecordNormalizer()
            reconciler = Reconciler(self.store, self.hasher, self.directory_config.fallback_credential)

            records = self._track_stream(run, normalizer.normalize_all(entries))
            result = reconciler.reconcile(records)
            result.invalid = normalizer.invalid_count

        except DirectoryError as e:
            run.failed_stage = e.stage
            run.transition(RunState.FAILED)
            logger.error(f"LDAP synchronization failed during {e.stage}: {e}")
            raise
        except Exception:
            run.failed_stage = run.state.value
            run.transition(RunState.FAILED)
            raise
        finally:
            run.end_time = datetime.now()
            directory.unbind()

        run.result = result
        run.transition(RunState.COMPLETED)
        logger.info(f"LDAP synchronization completed. Created: {result.created}, Skipped: {result.skipped}, "
                    f"Invalid entries: {result.invalid}")
        return result

    @staticmethod
    def _track_stream(run: SyncRun, records: Iterator[DirectoryRecord]) -> Iterator[DirectoryRecord]:
        """
        Pass records through while keeping the run state current.

        A record handed to the reconciler moves the run to RECONCILING. Fetching
        the next record is search work, so a stream error puts the run back in
        SEARCHING before it fails; reconciliation itself never fails the run.
        """
        iterator = iter(records)
        while True:
            try:
                record = next(iterator)
            except StopIteration:
                break
            except Exception:
                if run.state is not RunState.SEARCHING:
                    run.transition(RunState.SEARCHING)
                raise
            if run.state is not RunState.RECONCILING:
                run.transition(RunState.RECONCILING)
            run.records_seen += 1
            yield record

        if run.state is not RunState.RECONCILING:
            run.transition(RunState.RECONCILING)

    # Single-account paths

    def signup_user(self, email: str, password: str, name: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a non-admin account for an email that exists in the directory.

        The account name comes from the directory's cn when present, otherwise
        from ``name``. The password is the caller's, never a directory value.

        Raises:
            DirectoryRecordNotFound: If no directory entry has this email
        """
        logger.info(f"Attempting to create user account with email: {email}")

        directory = self.directory_factory(self.directory_config)
        try:
            directory.bind()
            entry = directory.search_one(self.directory_config.lookup_base_dn, email, PERSON_ATTRIBUTES)
        finally:
            directory.unbind()

        if entry is None:
            logger.error(f"Failed to create user account: {email} not found in LDAP directory")
            raise DirectoryRecordNotFound(email)

        account_name = self._directory_name(entry) or name
        if not account_name:
            raise InvalidDirectoryRecord(f"No name available for {email}")

        storage_label = generate_storage_label(USER_LABEL_PREFIX)
        account = self.store.create({
            'email': email,
            'name': account_name,
            'password_hash': self.hasher.hash(password),
            'is_admin': False,
            'must_change_password': False,
            'storage_label': storage_label,
        })
        security_logger.log_account_created(email, storage_label, False, 'signup')
        logger.info(f"Successfully created user account for {email}")
        return account.to_public_dict()

    def signup_admin(self, email: str, password: str, name: str) -> Dict[str, Any]:
        """Create an administrator account. The directory is not consulted."""
        logger.info(f"Attempting to create admin account with email: {email}")

        storage_label = generate_storage_label(ADMIN_LABEL_PREFIX)
        account = self.store.create({
            'email': email,
            'name': name,
            'password_hash': self.hasher.hash(password),
            'is_admin': True,
            'must_change_password': False,
            'storage_label': storage_label,
        })
        security_logger.log_account_created(email, storage_label, True, 'admin-signup')
        logger.info(f"Successfully created admin account for {email}")
        return account.to_public_dict()

    def list_accounts(self, auth: AuthContext) -> List[Dict[str, Any]]:
        """Public representations of every account; requires admin.user.read."""
        self._require(auth, ADMIN_USER_READ, admin=False, operation='list-accounts')
        return [account.to_public_dict() for account in self.store.list_accounts()]

    @staticmethod
    def _directory_name(entry: Dict[str, Any]) -> Optional[str]:
        names = attribute_map(entry).get('cn') or []
        return names[0] if names else None

    @staticmethod
    def _require(auth: Optional[AuthContext], permission: str, admin: bool, operation: str):
        if auth is None or not auth.authenticated:
            security_logger.log_permission_denied(operation)
            raise PermissionDenied(f"Authentication required for {operation}")
        if admin and not auth.is_admin:
            security_logger.log_permission_denied(operation, auth.user_id)
            raise PermissionDenied(f"Administrator role required for {operation}")
        if permission not in auth.permissions:
            security_logger.log_permission_denied(operation, auth.user_id)
            raise PermissionDenied(f"Missing permission {permission} for {operation}")
