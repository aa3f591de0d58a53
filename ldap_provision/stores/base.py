"""
Base account store interface.

This module defines the abstract base class that every account store backend must
implement. The store owns accounts once created; provisioning only reads them by
email and creates new ones.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional

from ldap_provision.models import LocalAccount

logger = logging.getLogger(__name__)

# Fields accepted by AccountStoreBase.create()
ACCOUNT_FIELDS = ('email', 'name', 'password_hash', 'is_admin', 'must_change_password', 'storage_label')


class AccountStoreBase(ABC):
    """
    Abstract base class for account store backends.

    Backends must enforce email uniqueness themselves and raise
    AccountConflictError when a create collides with an existing email, since
    concurrent provisioning runs rely on that as the only uniqueness guarantee.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the store.

        Args:
            config: account_store configuration dictionary
        """
        self.config = config
        self.name = config.get('module', type(self).__name__)

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[LocalAccount]:
        """
        Look up an account by email.

        Returns:
            The account, or None if no account uses this email

        Raises:
            AccountStoreError: If the store cannot be queried
        """
        pass

    @abstractmethod
    def create(self, fields: Dict[str, Any]) -> LocalAccount:
        """
        Create an account.

        Args:
            fields: Values for ACCOUNT_FIELDS

        Returns:
            The stored account with its store-assigned id

        Raises:
            AccountConflictError: If the email is already taken
            AccountCreationFailed: For any other store failure
        """
        pass

    @abstractmethod
    def list_accounts(self) -> List[LocalAccount]:
        """Return every account, oldest first."""
        pass

    def close(self):
        """Release backend resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
