"""
LDAP client for binding to the directory and streaming person entries.

A client owns one connection for the duration of a provisioning run: bind once,
then issue any number of searches, then unbind.
"""

import logging
import ssl
from typing import Dict, Iterator, List, Any, Optional

from ldap3 import Server, Connection, SUBTREE, ALL, Tls
from ldap3.core.exceptions import (
    LDAPException,
    LDAPBindError,
    LDAPCommunicationError,
    LDAPOperationResult,
)
from ldap3.utils.conv import escape_filter_chars

from ldap_provision.config import DirectoryConfig
from ldap_provision.errors import DirectoryAuthFailed, DirectorySearchFailed, DirectoryUnavailable
from ldap_provision.logging_setup import security_logger
from ldap_provision.retry import MaxRetriesExceeded, RetryPolicy

logger = logging.getLogger(__name__)

# Attributes requested for every provisioning search
PERSON_ATTRIBUTES = ['mail', 'cn', 'userPassword']

# Simple paged results control (RFC 2696)
PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'


class DirectoryClient:
    """
    LDAP client for binding and searching the directory.

    Searches return raw entries of the form ``{'dn': ..., 'attributes': {...}}``;
    turning them into DirectoryRecords is the normalizer's job.
    """

    def __init__(self, config: DirectoryConfig):
        """
        Initialize the client.

        Args:
            config: Directory connection settings
        """
        self.config = config
        self.server = None
        self.connection = None
        self._bound = False

    @property
    def bound(self) -> bool:
        return self._bound

    def bind(self) -> None:
        """
        Open the connection and bind with the service credential.

        Connection failures are retried up to ``max_retries`` times; a rejected
        credential fails immediately. Calling bind() on a bound client is a no-op.

        Raises:
            DirectoryUnavailable: If the endpoint cannot be reached
            DirectoryAuthFailed: If the credential is rejected
        """
        if self._bound:
            return

        try:
            self.server = Server(
                self.config.endpoint,
                use_ssl=self.config.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.config.connection_timeout
            )
        except LDAPException as e:
            raise DirectoryUnavailable(f"Invalid directory endpoint {self.config.endpoint}: {e}")

        try:
            policy = RetryPolicy(max_attempts=self.config.max_retries,
                                 wait_seconds=self.config.retry_wait_seconds)
            policy.run(self._open_and_bind, retry_on=(LDAPCommunicationError,),
                       label=f"Directory connection to {self.config.endpoint}")
        except MaxRetriesExceeded as e:
            security_logger.log_bind_attempt(self.config.endpoint, self.config.bind_dn, False)
            raise DirectoryUnavailable(
                f"Directory {self.config.endpoint} unreachable after {e.attempts} attempts: {e.last_exception}"
            )
        except DirectoryAuthFailed:
            security_logger.log_bind_attempt(self.config.endpoint, self.config.bind_dn, False)
            raise

        self._bound = True
        security_logger.log_bind_attempt(self.config.endpoint, self.config.bind_dn, True)
        logger.info(f"Bound to directory {self.config.endpoint} as {self.config.bind_dn}")

    def _open_and_bind(self) -> None:
        self.connection = Connection(
            self.server,
            user=self.config.bind_dn,
            password=self.config.bind_secret,
            auto_bind=False,
            raise_exceptions=True,
            receive_timeout=self.config.receive_timeout
        )

        try:
            self.connection.open()
            if self.config.start_tls and not self.config.use_ssl:
                self.connection.start_tls()
                logger.debug("StartTLS negotiation successful")
        except LDAPCommunicationError:
            self._drop_connection()
            raise
        except LDAPException as e:
            self._drop_connection()
            raise DirectoryUnavailable(f"Failed to open directory connection: {e}")

        try:
            bound = self.connection.bind()
        except LDAPCommunicationError:
            self._drop_connection()
            raise
        except (LDAPBindError, LDAPOperationResult) as e:
            self._drop_connection()
            raise DirectoryAuthFailed(f"Directory rejected bind for {self.config.bind_dn}: {e}")

        if not bound:
            result = self.connection.result
            self._drop_connection()
            raise DirectoryAuthFailed(f"Directory rejected bind for {self.config.bind_dn}: {result}")

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAPS or StartTLS.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.config.use_ssl or self.config.start_tls):
            return None

        tls_config = {}
        if not self.config.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled for directory connection")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.config.ca_cert_file:
            tls_config['ca_certs_file'] = self.config.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.config.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise DirectoryUnavailable(f"Failed to create TLS configuration: {e}")

    def search_all(self, base_dn: str, object_filter: str,
                   attributes: Optional[List[str]] = None) -> Iterator[Dict[str, Any]]:
        """
        Stream every entry matching ``object_filter`` below ``base_dn``.

        Entries are yielded lazily, one page at a time, in the order the server
        returns them. The iterator cannot be restarted.

        Raises:
            DirectorySearchFailed: If the search cannot start or fails mid-stream
        """
        self._require_bound()
        attributes = attributes or PERSON_ATTRIBUTES
        logger.debug(f"Searching {base_dn} with filter {object_filter}")

        cookie = None
        page_count = 0
        entry_count = 0
        while True:
            entries, cookie = self._search_page(base_dn, object_filter, attributes, cookie)
            page_count += 1
            for entry in entries:
                entry_count += 1
                yield entry
            if not cookie:
                break

        logger.info(f"Directory search returned {entry_count} entries across {page_count} pages")

    def _search_page(self, base_dn: str, search_filter: str, attributes: List[str],
                     cookie: Optional[bytes]):
        paged = {}
        if self.config.page_size:
            paged = {'paged_size': self.config.page_size, 'paged_cookie': cookie}

        try:
            success = self.connection.search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes,
                **paged
            )
        except LDAPException as e:
            raise DirectorySearchFailed(f"Directory search in {base_dn} failed: {e}")

        if not success and self.connection.result.get('result') not in (0, None):
            raise DirectorySearchFailed(f"Directory search in {base_dn} failed: {self.connection.result}")

        entries = [
            {'dn': item.get('dn'), 'attributes': dict(item.get('attributes') or {})}
            for item in (self.connection.response or [])
            if item.get('type') == 'searchResEntry'
        ]
        return entries, self._next_cookie()

    def _next_cookie(self) -> Optional[bytes]:
        if not self.config.page_size:
            return None
        try:
            return self.connection.result['controls'][PAGED_RESULTS_OID]['value']['cookie'] or None
        except (KeyError, TypeError):
            return None

    def search_one(self, base_dn: str, email: str,
                   attributes: Optional[List[str]] = None) -> Optional[Dict[str, Any]]:
        """
        Look up the entry whose ``mail`` matches ``email``.

        Returns:
            The raw entry, or None when no entry matches

        Raises:
            DirectorySearchFailed: If the search itself fails
        """
        self._require_bound()
        search_filter = f"(mail={escape_filter_chars(email)})"
        logger.debug(f"Looking up {search_filter} in {base_dn}")

        try:
            self.connection.search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes or PERSON_ATTRIBUTES,
                size_limit=1
            )
        except LDAPException as e:
            raise DirectorySearchFailed(f"Directory lookup for {email} failed: {e}")

        for item in self.connection.response or []:
            if item.get('type') == 'searchResEntry':
                return {'dn': item.get('dn'), 'attributes': dict(item.get('attributes') or {})}
        return None

    def _require_bound(self):
        if not self._bound or not self.connection:
            raise DirectorySearchFailed("Directory search issued before a successful bind")

    def _drop_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while discarding failed connection: {e}")
            self.connection = None

    def unbind(self):
        """Close the directory connection."""
        if self.connection and self._bound:
            try:
                self.connection.unbind()
                logger.debug("Directory connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing directory connection: {e}")
        self._bound = False
        self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unbind()
