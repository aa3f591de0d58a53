#!/usr/bin/env python3
"""
Validation script for LDAP Provision.

Checks that dependencies import, that the package modules load, and that the
hashing and store layers work without a directory server.
"""

import sys
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
        ("bcrypt", "bcrypt"),
        ("pytest", "pytest"),
        ("pytest-mock", "pytest_mock"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    print("\n=== Core Module Validation ===")

    modules = [
        "ldap_provision.config",
        "ldap_provision.directory_client",
        "ldap_provision.normalizer",
        "ldap_provision.reconciler",
        "ldap_provision.provisioning",
        "ldap_provision.hashing",
        "ldap_provision.notifications",
        "ldap_provision.retry",
        "ldap_provision.main",
        "ldap_provision.stores.base",
        "ldap_provision.stores.sqlite_store",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    print("\n=== Functionality Validation ===")

    try:
        from ldap_provision.hashing import PasswordHasher
        hasher = PasswordHasher(4)
        if not hasher.verify('changeme', hasher.hash('changeme')):
            raise RuntimeError("hash verification failed")
        print("  ✓ Password hashing")

        from ldap_provision.stores.sqlite_store import SQLiteAccountStore
        from ldap_provision.reconciler import Reconciler
        from ldap_provision.models import DirectoryRecord
        with SQLiteAccountStore({'database_path': ':memory:'}) as store:
            reconciler = Reconciler(store, hasher, 'changeme')
            result = reconciler.reconcile([DirectoryRecord('check@example.org', ('Check',))])
            if result.created != 1:
                raise RuntimeError(f"unexpected reconcile result {result.to_dict()}")
        print("  ✓ Reconciliation against in-memory store")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    print("\n=== CLI Validation ===")

    try:
        import subprocess

        result = subprocess.run([sys.executable, "-m", "ldap_provision.main", "--help"],
                                capture_output=True, text=True)
        if result.returncode == 0:
            print("  ✓ Help command working")
            return True
        print("  ✗ Help command failed")
        return False

    except Exception as e:
        print(f"  ✗ CLI validation failed: {e}")
        return False


def main():
    """Run all validations."""
    print("LDAP Provision - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Copy config.example.yaml to config.yaml and set the directory settings")
        print("  2. Test with: python -m ldap_provision.main --health-check")
        print("  3. Run sync: python -m ldap_provision.main sync")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
