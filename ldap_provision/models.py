"""
Data types shared by the directory, reconciliation and store layers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

# Permissions checked by the administrative entry points
ADMIN_USER_CREATE = 'admin.user.create'
ADMIN_USER_READ = 'admin.user.read'


@dataclass(frozen=True)
class DirectoryRecord:
    """Canonical identity data extracted from one directory entry."""

    email: str
    display_names: Tuple[str, ...]
    credential_material: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.display_names[0]

    def __repr__(self) -> str:
        # Never leak the directory-held password into logs
        has_credential = self.credential_material is not None
        return (f"DirectoryRecord(email={self.email!r}, display_names={self.display_names!r}, "
                f"has_credential={has_credential})")


@dataclass
class LocalAccount:
    """Account as persisted by an account store."""

    id: str
    email: str
    name: str
    password_hash: str
    is_admin: bool = False
    must_change_password: bool = False
    storage_label: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_public_dict(self) -> Dict[str, Any]:
        """Public representation of the account, without the password hash."""
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'is_admin': self.is_admin,
            'must_change_password': self.must_change_password,
            'storage_label': self.storage_label,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class SyncResult:
    """Aggregate outcome of one synchronization run."""

    created: int = 0
    skipped: int = 0
    invalid: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, int]:
        return {'created': self.created, 'skipped': self.skipped}


@dataclass(frozen=True)
class AuthContext:
    """Caller identity as established by the authentication layer."""

    user_id: Optional[str] = None
    is_admin: bool = False
    permissions: frozenset = frozenset()

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @classmethod
    def system(cls) -> 'AuthContext':
        """Context used by the command line, which runs with operator rights."""
        return cls(user_id='system', is_admin=True,
                   permissions=frozenset({ADMIN_USER_CREATE, ADMIN_USER_READ}))
