#!/usr/bin/env python3
"""
Unit tests for the reconciler.

Covers idempotence, per-record failure isolation, duplicate emails within one
stream, the fallback credential and the boundary between per-record and
run-fatal errors.
"""

import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_provision.errors import AccountConflictError, AccountCreationFailed, DirectorySearchFailed
from ldap_provision.hashing import PasswordHasher
from ldap_provision.models import DirectoryRecord
from ldap_provision.reconciler import Reconciler, generate_storage_label
from ldap_provision.stores.sqlite_store import SQLiteAccountStore


class FlakyStore(SQLiteAccountStore):
    """SQLite store that fails creation for selected emails."""

    def __init__(self, fail_emails=(), conflict_emails=()):
        super().__init__({'database_path': ':memory:'})
        self.fail_emails = set(fail_emails)
        self.conflict_emails = set(conflict_emails)

    def create(self, fields):
        if fields['email'] in self.fail_emails:
            raise AccountCreationFailed(f"database is locked while creating {fields['email']}")
        if fields['email'] in self.conflict_emails:
            raise AccountConflictError(fields['email'])
        return super().create(fields)


class TestReconciler(unittest.TestCase):
    """Test cases for Reconciler."""

    def setUp(self):
        self.store = SQLiteAccountStore({'database_path': ':memory:'})
        self.hasher = PasswordHasher(4)
        self.reconciler = Reconciler(self.store, self.hasher, 'changeme')

    def tearDown(self):
        self.store.close()

    def test_creates_missing_accounts(self):
        records = [
            DirectoryRecord('a@x.com', ('Alice',)),
            DirectoryRecord('b@x.com', ('Bob', 'Robert')),
        ]

        result = self.reconciler.reconcile(records)

        self.assertEqual(result.to_dict(), {'created': 2, 'skipped': 0})
        bob = self.store.get_by_email('b@x.com')
        self.assertEqual(bob.name, 'Bob')
        self.assertFalse(bob.is_admin)
        self.assertTrue(bob.must_change_password)
        self.assertTrue(bob.storage_label.startswith('user-'))

    def test_second_run_is_idempotent(self):
        records = [
            DirectoryRecord('a@x.com', ('Alice',)),
            DirectoryRecord('b@x.com', ('Bob',)),
        ]

        first = self.reconciler.reconcile(records)
        second = self.reconciler.reconcile(records)

        self.assertEqual(first.to_dict(), {'created': 2, 'skipped': 0})
        self.assertEqual(second.to_dict(), {'created': 0, 'skipped': 2})
        self.assertEqual(len(self.store.list_accounts()), 2)

    def test_duplicate_email_in_stream_creates_one_account(self):
        records = [
            DirectoryRecord('dup@x.com', ('First',)),
            DirectoryRecord('dup@x.com', ('Second',)),
        ]

        result = self.reconciler.reconcile(records)

        self.assertEqual(result.to_dict(), {'created': 1, 'skipped': 1})
        accounts = self.store.list_accounts()
        self.assertEqual(len(accounts), 1)
        self.assertEqual(accounts[0].name, 'First')

    def test_fallback_credential_used_without_directory_password(self):
        self.reconciler.reconcile([DirectoryRecord('nopass@x.com', ('No Pass',))])

        account = self.store.get_by_email('nopass@x.com')
        self.assertTrue(self.hasher.verify('changeme', account.password_hash))

    def test_directory_password_is_hashed(self):
        self.reconciler.reconcile([DirectoryRecord('pw@x.com', ('Pw',), 's3cret!')])

        account = self.store.get_by_email('pw@x.com')
        self.assertNotEqual(account.password_hash, 's3cret!')
        self.assertTrue(self.hasher.verify('s3cret!', account.password_hash))
        self.assertFalse(self.hasher.verify('changeme', account.password_hash))

    def test_directory_password_whitespace_is_significant(self):
        self.reconciler.reconcile([DirectoryRecord('ws@x.com', ('Ws',), '  pass word  ')])

        account = self.store.get_by_email('ws@x.com')
        self.assertTrue(self.hasher.verify('  pass word  ', account.password_hash))
        self.assertFalse(self.hasher.verify('pass word', account.password_hash))
        self.assertFalse(self.hasher.verify('changeme', account.password_hash))

    def test_blank_directory_password_is_not_replaced_by_fallback(self):
        self.reconciler.reconcile([DirectoryRecord('blank@x.com', ('Blank',), '   ')])

        account = self.store.get_by_email('blank@x.com')
        self.assertTrue(self.hasher.verify('   ', account.password_hash))
        self.assertFalse(self.hasher.verify('changeme', account.password_hash))

    def test_custom_fallback_credential(self):
        reconciler = Reconciler(self.store, self.hasher, 'Welcome-2024')
        reconciler.reconcile([DirectoryRecord('c@x.com', ('C',))])

        account = self.store.get_by_email('c@x.com')
        self.assertTrue(self.hasher.verify('Welcome-2024', account.password_hash))

    def test_work_factor_passed_to_hasher(self):
        reconciler = Reconciler(self.store, self.hasher, 'changeme', work_factor=5)
        with patch.object(self.hasher, 'hash', wraps=self.hasher.hash) as mock_hash:
            reconciler.reconcile([DirectoryRecord('wf@x.com', ('Wf',))])

        mock_hash.assert_called_once_with('changeme', 5)
        self.assertTrue(self.store.get_by_email('wf@x.com').password_hash.startswith('$2b$05$'))

    def test_creation_failure_does_not_abort_run(self):
        store = FlakyStore(fail_emails={'b@x.com'})
        reconciler = Reconciler(store, self.hasher, 'changeme')
        records = [
            DirectoryRecord('a@x.com', ('A',)),
            DirectoryRecord('b@x.com', ('B',)),
            DirectoryRecord('c@x.com', ('C',)),
        ]

        result = reconciler.reconcile(records)

        self.assertEqual(result.to_dict(), {'created': 2, 'skipped': 1})
        self.assertIsNone(store.get_by_email('b@x.com'))
        self.assertIsNotNone(store.get_by_email('c@x.com'))
        self.assertEqual(len(result.errors), 1)
        self.assertIn('b@x.com', result.errors[0])
        store.close()

    def test_conflict_on_create_is_skipped(self):
        store = FlakyStore(conflict_emails={'race@x.com'})
        reconciler = Reconciler(store, self.hasher, 'changeme')

        result = reconciler.reconcile([DirectoryRecord('race@x.com', ('Race',))])

        self.assertEqual(result.to_dict(), {'created': 0, 'skipped': 1})
        store.close()

    def test_lookup_failure_is_skipped(self):
        records = [DirectoryRecord('a@x.com', ('A',)), DirectoryRecord('b@x.com', ('B',))]
        original = self.store.get_by_email

        def flaky_lookup(email):
            if email == 'a@x.com':
                raise ConnectionError("store unreachable")
            return original(email)

        with patch.object(self.store, 'get_by_email', side_effect=flaky_lookup):
            result = self.reconciler.reconcile(records)

        self.assertEqual(result.to_dict(), {'created': 1, 'skipped': 1})

    def test_stream_error_propagates_after_partial_progress(self):
        def stream():
            yield DirectoryRecord('one@x.com', ('One',))
            yield DirectoryRecord('two@x.com', ('Two',))
            raise DirectorySearchFailed("connection reset mid-search")

        with self.assertRaises(DirectorySearchFailed):
            self.reconciler.reconcile(stream())

        # Records reconciled before the failure stay committed
        self.assertEqual(len(self.store.list_accounts()), 2)

    def test_preserves_stream_order(self):
        emails = [f"user{i}@x.com" for i in (3, 1, 2)]
        self.reconciler.reconcile(DirectoryRecord(email, (email,)) for email in emails)

        self.assertEqual([a.email for a in self.store.list_accounts()], emails)

    def test_storage_labels_are_unique(self):
        labels = {generate_storage_label() for _ in range(50)}
        self.assertEqual(len(labels), 50)
        self.assertTrue(all(label.startswith('user-') for label in labels))
        self.assertTrue(generate_storage_label('admin-').startswith('admin-'))


if __name__ == '__main__':
    unittest.main()
