"""
Reconciliation of directory records against the local account store.

Each record is either skipped (an account with that email exists, or creating
it failed) or turned into a new non-admin account. A failure on one record never
stops the rest of the directory population from being processed.
"""

import logging
import uuid
from typing import Iterable

from ldap_provision.hashing import PasswordHasher
from ldap_provision.logging_setup import security_logger
from ldap_provision.models import DirectoryRecord, SyncResult
from ldap_provision.stores.base import AccountStoreBase

logger = logging.getLogger(__name__)

USER_LABEL_PREFIX = 'user-'
ADMIN_LABEL_PREFIX = 'admin-'


def generate_storage_label(prefix: str = USER_LABEL_PREFIX) -> str:
    return f"{prefix}{uuid.uuid4()}"


class Reconciler:
    """Creates missing local accounts for a stream of directory records."""

    def __init__(self, store: AccountStoreBase, hasher: PasswordHasher,
                 fallback_credential: str, work_factor: int = None):
        self.store = store
        self.hasher = hasher
        self.fallback_credential = fallback_credential
        self.work_factor = work_factor if work_factor is not None else hasher.work_factor

    def reconcile(self, records: Iterable[DirectoryRecord]) -> SyncResult:
        """
        Reconcile records in the order the stream produces them.

        Only per-record work is guarded; an exception raised by the stream itself
        (a failed directory search) propagates and fails the run.

        Returns:
            Created and skipped counts
        """
        result = SyncResult()

        for record in records:
            logger.debug(f"Processing directory record {record.email}")
            try:
                if self._reconcile_record(record):
                    result.created += 1
                else:
                    result.skipped += 1
            except Exception as e:
                result.skipped += 1
                result.errors.append(f"{record.email}: {e}")
                logger.error(f"Failed to create user {record.email}: {e}")

        return result

    def _reconcile_record(self, record: DirectoryRecord) -> bool:
        """Return True if an account was created, False if one already existed."""
        if self.store.get_by_email(record.email):
            logger.info(f"User {record.email} already exists, skipping")
            return False

        credential = record.credential_material
        if credential is None:
            credential = self.fallback_credential
        password_hash = self.hasher.hash(credential, self.work_factor)
        storage_label = generate_storage_label(USER_LABEL_PREFIX)

        # The store's unique email constraint raises AccountConflictError on a race
        self.store.create({
            'email': record.email,
            'name': record.display_name,
            'password_hash': password_hash,
            'is_admin': False,
            'must_change_password': True,
            'storage_label': storage_label,
        })

        security_logger.log_account_created(record.email, storage_label, False, 'directory-sync')
        logger.info(f"Created user account for {record.email}")
        return True
