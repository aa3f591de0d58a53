#!/usr/bin/env python3
"""
Tests for the command line orchestrator.

The directory is replaced by FakeDirectory and the account store is a SQLite
file in a temporary directory, so every command runs end to end.
"""

import os
import sys
import json

import pytest
import yaml

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeDirectory, ldap_entry
from ldap_provision.errors import DirectoryAuthFailed, DirectoryUnavailable
from ldap_provision.main import (
    EXIT_BIND_FAILED,
    EXIT_CONFIG_ERROR,
    EXIT_FAILED,
    EXIT_OK,
    EXIT_SEARCH_FAILED,
    ProvisioningOrchestrator,
    main,
)
from ldap_provision.stores.sqlite_store import SQLiteAccountStore


@pytest.fixture
def config_file(tmp_path):
    config = {
        'directory': {
            'endpoint': 'ldap://ldap.test:389',
            'bind_dn': 'cn=admin,dc=example,dc=org',
            'bind_secret': 'adminpassword',
        },
        'account_store': {
            'module': 'sqlite_store',
            'database_path': str(tmp_path / 'accounts.db'),
        },
        'hashing': {'work_factor': 4},
        'logging': {'log_dir': str(tmp_path / 'logs')},
        'notifications': {'enable_email': False},
    }
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(config))
    return path


@pytest.fixture(autouse=True)
def quiet_logging(mocker):
    return mocker.patch('ldap_provision.main.setup_logging')


def use_directory(mocker, directory):
    mocker.patch('ldap_provision.main.DirectoryClient', directory)
    return directory


def stored_emails(tmp_path):
    with SQLiteAccountStore({'database_path': str(tmp_path / 'accounts.db')}) as store:
        return [account.email for account in store.list_accounts()]


def test_sync_prints_counts(mocker, config_file, tmp_path, capsys):
    use_directory(mocker, FakeDirectory([ldap_entry('a@x.com', ['A']), ldap_entry('b@x.com', ['B'])]))

    assert ProvisioningOrchestrator(str(config_file)).run() == EXIT_OK

    assert json.loads(capsys.readouterr().out) == {'created': 2, 'skipped': 0}
    assert stored_emails(tmp_path) == ['a@x.com', 'b@x.com']


def test_second_sync_skips_existing(mocker, config_file, capsys):
    use_directory(mocker, FakeDirectory([ldap_entry('a@x.com', ['A'])]))

    ProvisioningOrchestrator(str(config_file)).run()
    capsys.readouterr()
    ProvisioningOrchestrator(str(config_file)).run()

    assert json.loads(capsys.readouterr().out) == {'created': 0, 'skipped': 1}


def test_sync_success_notification(mocker, config_file):
    use_directory(mocker, FakeDirectory([ldap_entry('a@x.com', ['A']), ldap_entry(None, ['No Mail'])]))
    summary = mocker.patch('ldap_provision.main.send_sync_summary')

    ProvisioningOrchestrator(str(config_file)).run()

    result, _, _, invalid = summary.call_args[0]
    assert result == {'created': 1, 'skipped': 0}
    assert invalid == 1


def test_missing_config_exit_code(tmp_path):
    orchestrator = ProvisioningOrchestrator(str(tmp_path / 'missing.yaml'))

    assert orchestrator.run() == EXIT_CONFIG_ERROR


@pytest.mark.parametrize('error', [DirectoryUnavailable('unreachable'), DirectoryAuthFailed('rejected')])
def test_bind_failure_exit_code(mocker, config_file, error):
    use_directory(mocker, FakeDirectory([ldap_entry('a@x.com', ['A'])], bind_error=error))
    failure = mocker.patch('ldap_provision.main.send_sync_failure')

    assert ProvisioningOrchestrator(str(config_file)).run() == EXIT_BIND_FAILED
    assert failure.call_args[0][0] == 'bind'


def test_search_failure_exit_code(mocker, config_file, tmp_path, capsys):
    entries = [ldap_entry(f"user{i}@x.com", [f"User {i}"]) for i in range(4)]
    use_directory(mocker, FakeDirectory(entries, fail_after=2))
    failure = mocker.patch('ldap_provision.main.send_sync_failure')

    assert ProvisioningOrchestrator(str(config_file)).run() == EXIT_SEARCH_FAILED

    assert failure.call_args[0][0] == 'search'
    assert capsys.readouterr().out == ''
    assert len(stored_emails(tmp_path)) == 2


def test_unknown_store_module(mocker, config_file):
    config = yaml.safe_load(config_file.read_text())
    config['account_store']['module'] = 'no_such_store'
    config_file.write_text(yaml.safe_dump(config))
    use_directory(mocker, FakeDirectory())

    assert ProvisioningOrchestrator(str(config_file)).run() == EXIT_CONFIG_ERROR


def test_signup_user(mocker, config_file, capsys):
    use_directory(mocker, FakeDirectory(lookup={'c@x.com': ldap_entry('c@x.com', ['Carol'])}))

    assert ProvisioningOrchestrator(str(config_file)).signup_user('c@x.com', 'pw', None) == EXIT_OK

    account = json.loads(capsys.readouterr().out)
    assert account['name'] == 'Carol'
    assert account['is_admin'] is False


def test_signup_user_not_in_directory(mocker, config_file, capsys):
    use_directory(mocker, FakeDirectory(lookup={}))

    assert ProvisioningOrchestrator(str(config_file)).signup_user('ghost@x.com', 'pw', 'G') == EXIT_FAILED
    assert 'not found' in capsys.readouterr().err


def test_signup_admin_then_duplicate(mocker, config_file):
    use_directory(mocker, FakeDirectory())
    orchestrator = ProvisioningOrchestrator(str(config_file))

    assert orchestrator.signup_admin('root@x.com', 'pw', 'Root') == EXIT_OK
    assert orchestrator.signup_admin('root@x.com', 'pw', 'Root') == EXIT_FAILED


def test_list_accounts(mocker, config_file, capsys):
    use_directory(mocker, FakeDirectory([ldap_entry('a@x.com', ['A'])]))
    ProvisioningOrchestrator(str(config_file)).run()
    capsys.readouterr()

    assert ProvisioningOrchestrator(str(config_file)).list_accounts() == EXIT_OK

    accounts = json.loads(capsys.readouterr().out)
    assert [a['email'] for a in accounts] == ['a@x.com']
    assert 'password_hash' not in accounts[0]


def test_health_check_healthy(mocker, config_file):
    use_directory(mocker, FakeDirectory())

    status = ProvisioningOrchestrator(str(config_file)).health_check()

    assert status['status'] == 'healthy'
    assert status['checks']['directory']['status'] == 'pass'
    assert status['checks']['account_store']['status'] == 'pass'
    assert status['checks']['notifications']['status'] == 'skip'


def test_health_check_bind_failure(mocker, config_file):
    use_directory(mocker, FakeDirectory(bind_error=DirectoryAuthFailed('rejected')))

    status = ProvisioningOrchestrator(str(config_file)).health_check()

    assert status['status'] == 'unhealthy'
    assert 'bind' in status['checks']['directory']['message']


def test_main_dispatches_sync(mocker, config_file):
    use_directory(mocker, FakeDirectory([ldap_entry('a@x.com', ['A'])]))

    with pytest.raises(SystemExit) as exit_info:
        main(['--config', str(config_file), 'sync'])

    assert exit_info.value.code == EXIT_OK


def test_main_signup_admin_requires_name(config_file):
    with pytest.raises(SystemExit) as exit_info:
        main(['--config', str(config_file), 'signup-admin', '--email', 'root@x.com', '--password', 'pw'])

    assert exit_info.value.code == 2


def test_main_prompts_for_password(mocker, config_file):
    use_directory(mocker, FakeDirectory())
    prompt = mocker.patch('ldap_provision.main.getpass.getpass', return_value='typed-pw')

    with pytest.raises(SystemExit) as exit_info:
        main(['--config', str(config_file), 'signup-admin', '--email', 'root@x.com', '--name', 'Root'])

    assert exit_info.value.code == EXIT_OK
    prompt.assert_called_once()
