"""
bcrypt password hashing used for every provisioned account.
"""

import logging

import bcrypt

from ldap_provision.errors import HashingError

logger = logging.getLogger(__name__)

MIN_WORK_FACTOR = 4
MAX_WORK_FACTOR = 31


def _secret_bytes(plaintext: str) -> bytes:
    # surrogateescape restores raw directory bytes; bcrypt only reads the first 72
    return plaintext.encode('utf-8', 'surrogateescape')[:72]


class PasswordHasher:
    """One-way adaptive hashing with a configurable work factor (bcrypt cost)."""

    def __init__(self, work_factor: int = 10):
        self.work_factor = self._check_work_factor(work_factor)

    @staticmethod
    def _check_work_factor(work_factor: int) -> int:
        if not isinstance(work_factor, int) or not MIN_WORK_FACTOR <= work_factor <= MAX_WORK_FACTOR:
            raise HashingError(f"Work factor must be between {MIN_WORK_FACTOR} and {MAX_WORK_FACTOR}, "
                               f"got {work_factor!r}")
        return work_factor

    def hash(self, plaintext: str, work_factor: int = None) -> str:
        """
        Hash a plaintext credential.

        Args:
            plaintext: Credential to hash
            work_factor: bcrypt cost, defaults to the hasher's configured value

        Returns:
            bcrypt hash in modular crypt format

        Raises:
            HashingError: If the credential or work factor is unusable
        """
        if plaintext is None:
            raise HashingError("Cannot hash an empty credential")
        rounds = self._check_work_factor(work_factor) if work_factor is not None else self.work_factor

        try:
            return bcrypt.hashpw(_secret_bytes(plaintext), bcrypt.gensalt(rounds=rounds)).decode('ascii')
        except ValueError as e:
            raise HashingError(f"Failed to hash credential: {e}")

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Check a plaintext credential against a stored hash."""
        if plaintext is None or not hashed:
            return False
        try:
            return bcrypt.checkpw(_secret_bytes(plaintext), hashed.encode('ascii'))
        except ValueError as e:
            logger.warning(f"Unable to verify credential against stored hash: {e}")
            return False
