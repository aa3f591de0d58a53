"""
Exception hierarchy for LDAP Provision.

Directory errors carry the stage at which they occurred so operators can tell
connectivity problems apart from data problems.
"""


class ProvisioningError(Exception):
    """Base exception for provisioning errors."""
    pass


class ConfigurationError(ProvisioningError):
    """Raised when configuration is invalid or missing required fields."""
    pass


class DirectoryError(ProvisioningError):
    """Base exception for directory failures that abort a run."""

    stage = 'directory'

    def __init__(self, message: str, stage: str = None):
        super().__init__(message)
        if stage:
            self.stage = stage


class DirectoryUnavailable(DirectoryError):
    """Raised when the directory endpoint cannot be reached."""

    stage = 'bind'


class DirectoryAuthFailed(DirectoryError):
    """Raised when the directory rejects the service credential."""

    stage = 'bind'


class DirectorySearchFailed(DirectoryError):
    """Raised when a search fails to start or breaks mid-stream."""

    stage = 'search'


class DirectoryRecordNotFound(ProvisioningError):
    """Raised when direct signup finds no directory entry for an email."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User not found in LDAP directory: {email}")


class InvalidDirectoryRecord(ProvisioningError):
    """Raised when a directory entry lacks mail or cn."""
    pass


class AccountStoreError(ProvisioningError):
    """Base exception for account store failures."""
    pass


class AccountConflictError(AccountStoreError):
    """Raised when an account with the same email already exists."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Account already exists for {email}")


class AccountCreationFailed(AccountStoreError):
    """Raised when the store cannot create an account."""
    pass


class HashingError(ProvisioningError):
    """Raised when a credential cannot be hashed."""
    pass


class PermissionDenied(ProvisioningError):
    """Raised when a caller is not allowed to trigger an operation."""
    pass
