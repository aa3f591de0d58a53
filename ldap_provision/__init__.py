"""
LDAP Provision - Create local user accounts from an LDAP directory.

This package binds to an LDAP directory, enumerates person entries and
provisions any missing accounts in a local account store with bcrypt-hashed
credentials.
"""

__version__ = "1.0.0"
__author__ = "LDAP Provision Team"
