#!/usr/bin/env python3
"""
Unit tests for the SQLite account store.
"""

import os
import sys
import shutil
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_provision.errors import AccountConflictError, AccountCreationFailed, AccountStoreError
from ldap_provision.stores.base import AccountStoreBase
from ldap_provision.stores.sqlite_store import SQLiteAccountStore


def account_fields(email, **overrides):
    fields = {
        'email': email,
        'name': email.split('@')[0].title(),
        'password_hash': '$2b$04$' + 'a' * 53,
        'is_admin': False,
        'must_change_password': True,
        'storage_label': f"user-{email}",
    }
    fields.update(overrides)
    return fields


class TestSQLiteAccountStore(unittest.TestCase):

    def setUp(self):
        self.store = SQLiteAccountStore({'database_path': ':memory:'})

    def tearDown(self):
        self.store.close()

    def test_is_account_store(self):
        self.assertIsInstance(self.store, AccountStoreBase)

    def test_create_and_get(self):
        created = self.store.create(account_fields('a@x.com'))

        fetched = self.store.get_by_email('a@x.com')
        self.assertEqual(fetched.id, created.id)
        self.assertEqual(fetched.name, 'A')
        self.assertTrue(fetched.must_change_password)
        self.assertFalse(fetched.is_admin)
        self.assertEqual(fetched.storage_label, 'user-a@x.com')
        self.assertIsNotNone(fetched.created_at)

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.store.get_by_email('ghost@x.com'))

    def test_email_lookup_is_case_insensitive(self):
        self.store.create(account_fields('Mixed@X.com'))

        self.assertEqual(self.store.get_by_email('mixed@x.com').email, 'Mixed@X.com')

    def test_duplicate_email_conflicts(self):
        self.store.create(account_fields('a@x.com'))

        with self.assertRaises(AccountConflictError) as ctx:
            self.store.create(account_fields('A@x.com', storage_label='user-other'))
        self.assertEqual(ctx.exception.email, 'A@x.com')
        self.assertEqual(len(self.store.list_accounts()), 1)

    def test_duplicate_storage_label_fails(self):
        self.store.create(account_fields('a@x.com', storage_label='user-same'))

        with self.assertRaises(AccountCreationFailed):
            self.store.create(account_fields('b@x.com', storage_label='user-same'))

    def test_unknown_fields_rejected(self):
        with self.assertRaises(AccountCreationFailed):
            self.store.create(account_fields('a@x.com', quota=10))

    def test_list_accounts_in_creation_order(self):
        for email in ('c@x.com', 'a@x.com', 'b@x.com'):
            self.store.create(account_fields(email))

        self.assertEqual([a.email for a in self.store.list_accounts()], ['c@x.com', 'a@x.com', 'b@x.com'])

    def test_public_dict_omits_hash(self):
        account = self.store.create(account_fields('a@x.com', is_admin=True))

        public = account.to_public_dict()
        self.assertNotIn('password_hash', public)
        self.assertTrue(public['is_admin'])

    def test_context_manager_closes(self):
        with SQLiteAccountStore({'database_path': ':memory:'}) as store:
            store.create(account_fields('a@x.com'))
        self.assertIsNone(store.connection)


class TestSQLiteFileDatabase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.database_path = os.path.join(self.temp_dir, 'accounts.db')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_accounts_persist_across_connections(self):
        with SQLiteAccountStore({'database_path': self.database_path}) as store:
            store.create(account_fields('a@x.com'))

        with SQLiteAccountStore({'database_path': self.database_path}) as store:
            self.assertIsNotNone(store.get_by_email('a@x.com'))

    def test_unopenable_database(self):
        with self.assertRaises(AccountStoreError):
            SQLiteAccountStore({'database_path': os.path.join(self.temp_dir, 'missing', 'accounts.db')})


if __name__ == '__main__':
    unittest.main()
