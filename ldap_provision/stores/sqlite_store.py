"""
SQLite account store.

Accounts live in a single table with a case-insensitive unique index on email,
which is what makes concurrent provisioning runs safe.
"""

import sqlite3
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

from ldap_provision.errors import AccountConflictError, AccountCreationFailed, AccountStoreError
from ldap_provision.models import LocalAccount
from .base import AccountStoreBase, ACCOUNT_FIELDS

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL COLLATE NOCASE,
    name TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    is_admin INTEGER NOT NULL DEFAULT 0,
    must_change_password INTEGER NOT NULL DEFAULT 0,
    storage_label TEXT,
    created_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS accounts_email_idx ON accounts (email);
CREATE UNIQUE INDEX IF NOT EXISTS accounts_storage_label_idx ON accounts (storage_label);
"""


class SQLiteAccountStore(AccountStoreBase):
    """Account store backed by a SQLite database file."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.database_path = config.get('database_path', 'accounts.db')
        try:
            self.connection = sqlite3.connect(self.database_path)
            self.connection.row_factory = sqlite3.Row
            self.connection.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise AccountStoreError(f"Failed to open account database {self.database_path}: {e}")
        logger.debug(f"Opened account database {self.database_path}")

    def get_by_email(self, email: str) -> Optional[LocalAccount]:
        try:
            row = self.connection.execute(
                "SELECT * FROM accounts WHERE email = ?", (email,)
            ).fetchone()
        except sqlite3.Error as e:
            raise AccountStoreError(f"Failed to look up account {email}: {e}")
        return self._row_to_account(row) if row else None

    def create(self, fields: Dict[str, Any]) -> LocalAccount:
        unknown = set(fields) - set(ACCOUNT_FIELDS)
        if unknown:
            raise AccountCreationFailed(f"Unknown account fields: {', '.join(sorted(unknown))}")

        account = LocalAccount(
            id=str(uuid.uuid4()),
            email=fields['email'],
            name=fields['name'],
            password_hash=fields['password_hash'],
            is_admin=bool(fields.get('is_admin', False)),
            must_change_password=bool(fields.get('must_change_password', False)),
            storage_label=fields.get('storage_label'),
            created_at=datetime.now(timezone.utc),
        )

        try:
            with self.connection:
                self.connection.execute(
                    "INSERT INTO accounts (id, email, name, password_hash, is_admin, "
                    "must_change_password, storage_label, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (account.id, account.email, account.name, account.password_hash,
                     int(account.is_admin), int(account.must_change_password),
                     account.storage_label, account.created_at.isoformat())
                )
        except sqlite3.IntegrityError as e:
            if 'email' in str(e):
                raise AccountConflictError(account.email)
            raise AccountCreationFailed(f"Failed to create account {account.email}: {e}")
        except sqlite3.Error as e:
            raise AccountCreationFailed(f"Failed to create account {account.email}: {e}")

        logger.debug(f"Stored account {account.id} for {account.email}")
        return account

    def list_accounts(self) -> List[LocalAccount]:
        try:
            rows = self.connection.execute(
                "SELECT * FROM accounts ORDER BY rowid"
            ).fetchall()
        except sqlite3.Error as e:
            raise AccountStoreError(f"Failed to list accounts: {e}")
        return [self._row_to_account(row) for row in rows]

    def close(self):
        if self.connection:
            try:
                self.connection.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing account database: {e}")
            finally:
                self.connection = None

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> LocalAccount:
        return LocalAccount(
            id=row['id'],
            email=row['email'],
            name=row['name'],
            password_hash=row['password_hash'],
            is_admin=bool(row['is_admin']),
            must_change_password=bool(row['must_change_password']),
            storage_label=row['storage_label'],
            created_at=datetime.fromisoformat(row['created_at']),
        )
