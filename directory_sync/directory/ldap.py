"""
LDAP directory backend.

Groups are searched under a group base DN; members of a group are found with
a memberOf reverse lookup (Active Directory style). Both searches use the
simple paged results control.
"""

import ssl
import logging
import threading
from typing import Dict, List, Any, Optional, Tuple

from ldap3 import Server, Connection, SUBTREE, BASE, Tls
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from directory_sync.directory.base import DirectoryClient, filter_prefixed_groups
from directory_sync.errors import DirectoryError
from directory_sync.models import DirectoryGroup, DirectoryMember
from directory_sync.pagination import iter_token_pages
from directory_sync.retry import retry_call, retry_settings_from_config, create_retry_callback

logger = logging.getLogger(__name__)

PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'

GROUP_ATTRIBUTES = ['cn', 'mail']
MEMBER_ATTRIBUTES = ['cn', 'mail', 'objectClass', 'userAccountControl']

# userAccountControl ACCOUNTDISABLE flag
ACCOUNT_DISABLED = 0x2


def _first(values: Any) -> Optional[Any]:
    if isinstance(values, (list, tuple)):
        return values[0] if values else None
    return values


class LDAPDirectoryClient(DirectoryClient):
    """
    Directory client for LDAP servers.

    ldap3 connections are not shared between threads: each thread binds its
    own connection on first use; all of them are unbound on close().
    """

    def __init__(self, config: Dict[str, Any], group_prefix: str,
                 retry_config: Optional[Dict[str, Any]] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize LDAP client with configuration.

        Args:
            config: directory.ldap configuration section
            group_prefix: Display name prefix of synced groups
            retry_config: error_handling configuration section, used for binds
            cancel_event: Optional run-wide cancel event
        """
        super().__init__(group_prefix, cancel_event)
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.group_base_dn = config['group_base_dn']
        self.group_filter = config.get('group_filter', '(objectClass=group)')
        self.user_base_dn = config.get('user_base_dn') or self.group_base_dn
        self.page_size = config.get('page_size', 500)

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        self.retry_settings = retry_settings_from_config(retry_config or {})

        self.server = self._create_server()
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: List[Connection] = []
        # External ID -> DN, filled by list_groups before members are fetched
        self._group_dns: Dict[str, str] = {}

    def _create_tls_config(self) -> Optional[Tls]:
        """Create TLS configuration, or None for plain LDAP."""
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {'validate': ssl.CERT_REQUIRED}
        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("LDAP SSL certificate verification disabled")
        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise DirectoryError(f"Failed to create LDAP TLS configuration: {e}") from e

    def _create_server(self) -> Server:
        try:
            return Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                connect_timeout=self.connection_timeout
            )
        except LDAPException as e:
            raise DirectoryError(f"Failed to create LDAP server for {self.server_url}: {e}") from e

    def _bind(self) -> Connection:
        """Open, optionally StartTLS, and bind one connection."""
        connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_password,
            auto_bind=False,
            receive_timeout=self.receive_timeout,
            raise_exceptions=False
        )
        try:
            connection.open()
            if self.start_tls and not self.use_ssl and not connection.start_tls():
                raise DirectoryError(f"Failed to start TLS: {connection.result}")
            if not connection.bind():
                raise DirectoryError(f"Bind as {self.bind_dn} failed: {connection.result}")
        except (LDAPException, DirectoryError):
            connection.unbind()
            raise

        return connection

    def _get_connection(self) -> Connection:
        connection = getattr(self._local, 'connection', None)
        if connection is not None:
            return connection

        try:
            connection = retry_call(
                self._bind,
                exceptions=(LDAPException, DirectoryError),
                on_retry=create_retry_callback(f"LDAP bind to {self.server_url}"),
                reraise=True,
                **self.retry_settings
            )
        except LDAPException as e:
            raise DirectoryError(f"Failed to connect to LDAP server {self.server_url}: {e}") from e

        logger.debug(f"Bound to LDAP server {self.server_url} on {threading.current_thread().name}")
        self._local.connection = connection
        with self._lock:
            self._connections.append(connection)
        return connection

    def _search_page(self, search_base: str, search_filter: str, attributes: List[str],
                     cookie: Optional[bytes]) -> Tuple[List[Any], Optional[bytes]]:
        """Run one page of a paged subtree search and return (entries, next_cookie)."""
        connection = self._get_connection()
        try:
            connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes,
                paged_size=self.page_size,
                paged_cookie=cookie
            )
        except LDAPException as e:
            raise DirectoryError(f"LDAP search under {search_base} failed: {e}") from e

        result = connection.result or {}
        if result.get('result', 0) != 0:
            raise DirectoryError(
                f"LDAP search under {search_base} failed: {result.get('description')} {result.get('message', '')}"
            )

        entries = list(connection.entries)
        controls = result.get('controls') or {}
        paged = controls.get(PAGED_RESULTS_OID) or {}
        next_cookie = (paged.get('value') or {}).get('cookie')
        return entries, next_cookie or None

    def _to_group(self, entry) -> DirectoryGroup:
        attributes = entry.entry_attributes_as_dict
        return DirectoryGroup(
            email=_first(attributes.get('mail')) or entry.entry_dn,
            name=_first(attributes.get('cn')) or '',
        )

    def _to_member(self, entry) -> DirectoryMember:
        attributes = entry.entry_attributes_as_dict
        object_classes = [str(c).lower() for c in attributes.get('objectClass') or []]
        member_type = 'GROUP' if 'group' in object_classes else 'USER'

        status = None
        account_control = _first(attributes.get('userAccountControl'))
        if account_control is not None:
            status = 'SUSPENDED' if int(account_control) & ACCOUNT_DISABLED else 'ACTIVE'

        return DirectoryMember(
            id=entry.entry_dn,
            email=_first(attributes.get('mail')),
            type=member_type,
            status=status,
        )

    def _find_group_dn(self, group: DirectoryGroup) -> str:
        if group.email in self._group_dns:
            return self._group_dns[group.email]

        # Groups without a mail attribute use their DN as external ID
        if '@' not in group.email:
            return group.email

        search_filter = f"(&{self.group_filter}(mail={escape_filter_chars(group.email)}))"
        entries, _ = self._search_page(self.group_base_dn, search_filter, ['cn'], None)
        if not entries:
            raise DirectoryError(f"Group {group.email} not found under {self.group_base_dn}")
        return entries[0].entry_dn

    def list_groups(self) -> List[DirectoryGroup]:
        def fetch_page(cookie):
            entries, next_cookie = self._search_page(self.group_base_dn, self.group_filter, GROUP_ATTRIBUTES, cookie)
            groups = []
            for entry in entries:
                group = self._to_group(entry)
                self._group_dns[group.email] = entry.entry_dn
                groups.append(group)
            return groups, next_cookie

        groups = iter_token_pages(fetch_page, cancel_event=self.cancel_event, description='directory groups')
        prefixed = filter_prefixed_groups(groups, self.group_prefix)
        logger.info(f"Found {len(prefixed)} groups with prefix '{self.group_prefix}' "
                    f"out of {len(groups)} under {self.group_base_dn}")
        return prefixed

    def get_group_members(self, group: DirectoryGroup) -> List[DirectoryMember]:
        group_dn = self._find_group_dn(group)
        search_filter = f"(memberOf={escape_filter_chars(group_dn)})"

        def fetch_page(cookie):
            entries, next_cookie = self._search_page(self.user_base_dn, search_filter, MEMBER_ATTRIBUTES, cookie)
            return [self._to_member(e) for e in entries], next_cookie

        return iter_token_pages(fetch_page, cancel_event=self.cancel_event,
                                description=f"members of {group.email}")

    def test_connection(self) -> bool:
        """
        Test LDAP connection without throwing exceptions.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            connection = self._get_connection()
            connection.search(
                search_base=self.group_base_dn,
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['objectClass'],
                size_limit=1
            )
            return (connection.result or {}).get('result', 1) == 0
        except (DirectoryError, LDAPException) as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def close(self):
        """Unbind every connection opened by any thread."""
        with self._lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            try:
                connection.unbind()
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
        self._local = threading.local()
        logger.debug(f"Closed {len(connections)} LDAP connections")
