"""
LDAP client for connecting to and querying the on-premises directory.

This module provides functionality to connect to Active Directory / LDAP
servers, resolve groups, enumerate their direct members and read the
account status and principal name of each member.
"""

import logging
import ssl
import time
from typing import Dict, List, Any, Mapping, Optional
from ldap3 import Server, Connection, SUBTREE, BASE, ALL, Tls
from ldap3.core.exceptions import (
    LDAPException,
    LDAPBindError,
    LDAPInvalidDnError,
    LDAPInvalidDNSyntaxResult,
    LDAPNoSuchObjectResult,
)
from ldap3.utils.conv import escape_filter_chars

from group_sync.errors import MemberResolutionError

logger = logging.getLogger(__name__)

# userAccountControl flag for disabled accounts
ACCOUNTDISABLE = 0x0002

DEFAULT_GROUP_FILTER = '(|(objectClass=group)(objectClass=groupOfNames)(objectClass=groupOfUniqueNames))'
MEMBER_ATTRIBUTES = ['member', 'uniqueMember']
USER_OBJECT_CLASSES = {'user', 'person', 'inetorgperson', 'organizationalperson'}


class LDAPConnectionError(Exception):
    """Raised when LDAP connection fails."""
    pass


class LDAPQueryError(Exception):
    """Raised when LDAP query fails."""
    pass


class LDAPObjectError(LDAPQueryError):
    """Raised when the searched object does not exist or its DN is malformed."""
    pass


# Results that concern the searched entry itself, not the session
OBJECT_LEVEL_ERRORS = (LDAPNoSuchObjectResult, LDAPInvalidDNSyntaxResult, LDAPInvalidDnError)


def _attribute(attributes: Mapping[str, Any], name: str) -> List[Any]:
    """Case-insensitive attribute lookup returning a list of values."""
    for key, value in attributes.items():
        if key.lower() == name.lower():
            if value is None:
                return []
            if isinstance(value, (list, tuple)):
                return list(value)
            return [value]
    return []


def _first(attributes: Mapping[str, Any], name: str) -> Optional[Any]:
    values = _attribute(attributes, name)
    return values[0] if values else None


class LDAPClient:
    """
    LDAP client for the source directory.

    Resolves groups by identifier or mail and reads their direct members.
    """

    def __init__(self, config: Mapping[str, Any]):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP configuration dictionary
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.search_base_dn = config.get('search_base_dn', '')
        self.group_filter = config.get('group_filter', DEFAULT_GROUP_FILTER)
        self.principal_attribute = config.get('principal_attribute', 'userPrincipalName')

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 30)

        self.server = None
        self.connection = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self, max_retries: int = 3, retry_wait: float = 5) -> bool:
        """
        Establish connection to LDAP server with retry logic.

        Args:
            max_retries: Maximum number of connection attempts
            retry_wait: Seconds to wait between retries

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If connection fails after all retries
        """
        max_retries = max(1, max_retries)

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except LDAPConnectionError:
            raise
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        last_exception = None
        for attempt in range(max_retries):
            try:
                # auto_range follows ranged retrieval of large member attributes
                self.connection = Connection(
                    self.server,
                    user=self.bind_dn,
                    password=self.bind_password,
                    auto_bind=False,
                    auto_range=True,
                    receive_timeout=self.receive_timeout
                )

                if not self.connection.open():
                    raise LDAPConnectionError(f"Failed to open connection: {self.connection.result}")

                if self.start_tls and not self.use_ssl:
                    if not self.connection.start_tls():
                        raise LDAPConnectionError(f"Failed to start TLS: {self.connection.result}")
                    logger.debug("StartTLS negotiation successful")

                if not self.connection.bind():
                    raise LDAPBindError(f"Bind failed: {self.connection.result}")

                self._connected = True
                logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
                return True

            except (LDAPException, LDAPConnectionError) as e:
                last_exception = e
                logger.warning(f"LDAP connection attempt {attempt + 1}/{max_retries} failed: {e}")
                self._discard_connection()
                if attempt < max_retries - 1:
                    time.sleep(retry_wait)
            except Exception as e:
                last_exception = e
                logger.error(f"Unexpected error during LDAP connection: {e}")
                self._discard_connection()
                break

        error_msg = f"Failed to connect to LDAP after {max_retries} attempts"
        if last_exception:
            error_msg += f": {last_exception}"
        raise LDAPConnectionError(error_msg)

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while discarding LDAP connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _search(self, search_base: str, search_filter: str, scope, attributes: List[str]) -> List[Dict[str, Any]]:
        """Run a search and return the matching entries as (dn, attributes) dictionaries."""
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

        logger.debug(f"Searching with filter: {search_filter} in base: {search_base}")
        try:
            self.connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes
            )
        except OBJECT_LEVEL_ERRORS as e:
            raise LDAPObjectError(f"LDAP object lookup failed: {e}")
        except LDAPException as e:
            raise LDAPQueryError(f"LDAP query failed: {e}")

        return [
            {'dn': str(entry.entry_dn), 'attributes': entry.entry_attributes_as_dict}
            for entry in self.connection.entries
        ]

    def find_group(self, group_identifier: str) -> Optional[Dict[str, Any]]:
        """
        Resolve a group by exact identifier, falling back to its mail attribute.

        A distinguished name is looked up directly. Any other identifier is
        matched against sAMAccountName and cn beneath the search base.

        Args:
            group_identifier: DN, account name, common name or mail address

        Returns:
            Dictionary with the group's dn, name and mail, or None if not found

        Raises:
            LDAPQueryError: If the directory query itself fails
        """
        attributes = ['cn', 'sAMAccountName', 'mail']
        escaped = escape_filter_chars(group_identifier)

        if self._looks_like_dn(group_identifier):
            entries = self._search(group_identifier, self.group_filter, BASE, attributes)
        else:
            search_filter = f"(&{self.group_filter}(|(sAMAccountName={escaped})(cn={escaped})))"
            entries = self._search(self._get_domain_base(), search_filter, SUBTREE, attributes)

        if not entries:
            logger.debug(f"Group '{group_identifier}' not found by identifier, trying mail attribute")
            search_filter = f"(&{self.group_filter}(mail={escaped}))"
            entries = self._search(self._get_domain_base(), search_filter, SUBTREE, attributes)

        if not entries:
            return None

        if len(entries) > 1:
            logger.warning(f"Multiple groups match '{group_identifier}', using {entries[0]['dn']}")

        entry = entries[0]
        return {
            'dn': entry['dn'],
            'name': _first(entry['attributes'], 'sAMAccountName') or _first(entry['attributes'], 'cn'),
            'mail': _first(entry['attributes'], 'mail')
        }

    def get_group_member_dns(self, group_dn: str) -> List[str]:
        """
        Retrieve every direct member reference of a group.

        Ranged retrieval is followed by the connection, so groups larger than
        the server's per-attribute value limit are returned completely.

        Args:
            group_dn: Distinguished name of the group

        Returns:
            List of member distinguished names

        Raises:
            LDAPQueryError: If the group cannot be read
        """
        entries = self._search(group_dn, '(objectClass=*)', BASE, MEMBER_ATTRIBUTES)
        if not entries:
            raise LDAPQueryError(f"Group not found or not readable: {group_dn}")

        attributes = entries[0]['attributes']
        member_dns = []
        for attribute_name in MEMBER_ATTRIBUTES:
            member_dns.extend(str(value) for value in _attribute(attributes, attribute_name))

        logger.debug(f"Found {len(member_dns)} direct member references in {group_dn}")
        return member_dns

    def get_user_record(self, member_dn: str) -> Dict[str, Any]:
        """
        Resolve a member reference to its identity record.

        Args:
            member_dn: Distinguished name of the member

        Returns:
            Dictionary with dn, principal_name (may be None) and enabled

        Raises:
            MemberResolutionError: If the reference is not a readable user object
            LDAPQueryError: If the directory cannot be queried (connection lost, session ended)
        """
        attributes = [self.principal_attribute, 'userAccountControl', 'objectClass', 'nsAccountLock',
                      'pwdAccountLockedTime']
        try:
            entries = self._search(member_dn, '(objectClass=*)', BASE, attributes)
        except LDAPObjectError as e:
            raise MemberResolutionError(member_dn, str(e))

        if not entries:
            raise MemberResolutionError(member_dn, "object not found")

        entry_attributes = entries[0]['attributes']
        object_classes = {str(value).lower() for value in _attribute(entry_attributes, 'objectClass')}
        if 'computer' in object_classes or not (object_classes & USER_OBJECT_CLASSES):
            raise MemberResolutionError(member_dn, "not a user object")

        principal_name = _first(entry_attributes, self.principal_attribute)
        return {
            'dn': entries[0]['dn'],
            'principal_name': str(principal_name).strip() if principal_name else None,
            'enabled': self._is_enabled(entry_attributes)
        }

    def _is_enabled(self, attributes: Mapping[str, Any]) -> bool:
        """Read the account status flag (AD userAccountControl, or nsAccountLock elsewhere)."""
        uac = _first(attributes, 'userAccountControl')
        if uac is not None:
            try:
                return not (int(uac) & ACCOUNTDISABLE)
            except (TypeError, ValueError):
                logger.warning(f"Unreadable userAccountControl value: {uac!r}")
                return False

        locked = _first(attributes, 'nsAccountLock')
        if locked is not None:
            return str(locked).lower() not in ('true', '1', 'yes')

        # ppolicy lockout
        if _first(attributes, 'pwdAccountLockedTime'):
            return False

        return True

    @staticmethod
    def _looks_like_dn(identifier: str) -> bool:
        return '=' in identifier and ',' in identifier

    def _get_domain_base(self) -> str:
        """Return the configured search base, or derive it from the bind DN or server info."""
        if self.search_base_dn:
            return self.search_base_dn

        if 'DC=' in self.bind_dn.upper():
            parts = self.bind_dn.split(',')
            dc_parts = [part.strip() for part in parts if part.strip().upper().startswith('DC=')]
            if dc_parts:
                return ','.join(dc_parts)

        if self.server and self.server.info and self.server.info.naming_contexts:
            return self.server.info.naming_contexts[0]

        raise LDAPQueryError("Cannot determine domain base DN")

    def test_connection(self) -> bool:
        """
        Test LDAP connection without throwing exceptions.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            if not self._connected:
                self.connect(max_retries=1, retry_wait=0)

            return bool(self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['namingContexts'],
                size_limit=1
            ))
        except (LDAPException, LDAPConnectionError) as e:
            logger.warning(f"LDAP connection test failed: {e}")
            return False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
