"""
Registry API client.

This module talks to the groups/users registry over its JSON REST API:
client-credentials login, paginated listing of organizations, groups and users,
and group creation and update. Transient failures are retried with
exponential backoff; all other errors propagate to the caller.
"""

import json
import ssl
import logging
import threading
from typing import Dict, List, Any, Optional, Tuple, Union
from urllib.parse import urlparse
from http.client import HTTPSConnection, HTTPConnection, HTTPException

from directory_sync.errors import SyncError
from directory_sync.models import RegistryGroup, RegistryUser, Organization
from directory_sync.pagination import fetch_all_pages, DEFAULT_PAGE_SIZE
from directory_sync.retry import (
    retry_call, retry_settings_from_config, is_retryable_error, create_retry_callback
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10


class RegistryAPIError(SyncError):
    """Raised when a registry API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RegistryAuthenticationError(RegistryAPIError):
    """Raised when the registry rejects our credentials or token."""
    pass


class RegistryDecodeError(RegistryAPIError):
    """Raised when a registry response cannot be decoded; carries the raw body."""

    def __init__(self, message: str, body: str):
        super().__init__(message)
        self.body = body


class RegistryClient:
    """
    Client for the registry REST API.

    Usage:
        with RegistryClient(config['registry'], config['error_handling']) as client:
            client.authenticate()
            groups = client.get_groups()
    """

    def __init__(self, config: Dict[str, Any], retry_config: Optional[Dict[str, Any]] = None):
        """
        Initialize registry client.

        Args:
            config: Registry configuration dictionary (base_url, client_id,
                client_secret, page_size, timeout_seconds, verify_ssl, ca_cert_file)
            retry_config: error_handling configuration section
        """
        self.config = config
        self.base_url = config['base_url']
        self.client_id = config.get('client_id')
        self.client_secret = config.get('client_secret')
        self.page_size = config.get('page_size', DEFAULT_PAGE_SIZE)
        self.timeout = config.get('timeout_seconds', DEFAULT_TIMEOUT_SECONDS)
        self.verify_ssl = config.get('verify_ssl', True)
        self.retry_settings = retry_settings_from_config(retry_config or {})

        # Parse base URL
        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None
        self.auth_headers = {}
        self._lock = threading.Lock()

        self._setup_ssl_context()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for registry {self.host}")
            return

        self.ssl_context = ssl.create_default_context()

        ca_cert_file = self.config.get('ca_cert_file')
        if ca_cert_file:
            try:
                self.ssl_context.load_verify_locations(cafile=ca_cert_file)
                logger.info(f"Loaded CA certificates for registry: {ca_cert_file}")
            except (OSError, ssl.SSLError) as e:
                raise RegistryAPIError(f"Failed to load CA certificates {ca_cert_file}: {e}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                logger.warning(f"Error closing registry connection: {e}")
            finally:
                self.connection = None

    def _send(self, method: str, path: str, body: Optional[str], headers: Dict[str, str],
              allowed_status: Tuple[int, ...]) -> str:
        """Perform a single HTTP exchange and return the response body."""
        full_path = self.base_path + path

        with self._lock:
            try:
                conn = self._get_connection()
                logger.debug(f"Making {method} request to {self.host}{full_path}")
                conn.request(method, full_path, body, headers)
                response = conn.getresponse()
                response_data = response.read().decode('utf-8')
            except (ConnectionError, TimeoutError, OSError, HTTPException) as e:
                # Connection state is unknown after a failure, start fresh next time
                self.close_connection()
                if isinstance(e, (ConnectionError, TimeoutError)):
                    raise
                raise ConnectionError(f"Connection error to registry {self.host}: {e}") from e

        logger.debug(f"Response status: {response.status} {response.reason}")

        if response.status in (401, 403):
            raise RegistryAuthenticationError(
                f"{method} {full_path} was rejected with status {response.status}", response.status
            )
        if response.status not in allowed_status:
            raise RegistryAPIError(
                f"{method} {full_path} responded with status code {response.status}", response.status
            )

        return response_data

    def request(self, method: str, path: str, body: Optional[Dict] = None,
                allowed_status: Tuple[int, ...] = (200,), authenticated: bool = True) -> Dict[str, Any]:
        """
        Make HTTP request to the registry API.

        Args:
            method: HTTP method (GET, POST, PUT)
            path: API endpoint path (relative to base_url)
            body: Request body data, sent as JSON
            allowed_status: Status codes treated as success
            authenticated: Whether to send the bearer token

        Returns:
            Parsed response data (empty dict for an empty body)

        Raises:
            RegistryAPIError: If the request fails after retries
            RegistryDecodeError: If the response is not valid JSON
        """
        headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        if authenticated:
            headers.update(self.auth_headers)

        request_body = json.dumps(body) if body is not None else None

        try:
            response_data = retry_call(
                self._send,
                args=(method, path, request_body, headers, allowed_status),
                exceptions=(ConnectionError, TimeoutError, RegistryAPIError),
                retry_if=is_retryable_error,
                on_retry=create_retry_callback(f"Registry {method} {path}"),
                reraise=True,
                **self.retry_settings
            )
        except (ConnectionError, TimeoutError) as e:
            raise RegistryAPIError(f"{method} {path} failed: {e}") from e

        if not response_data:
            return {}

        try:
            return json.loads(response_data)
        except json.JSONDecodeError as e:
            logger.error(f"Failed unmarshalling {method} {path} response: {e}; body: {response_data[:500]}")
            raise RegistryDecodeError(f"Invalid JSON response from {method} {path}: {e}", response_data) from e

    def get_token(self, client_id: Optional[str] = None, client_secret: Optional[str] = None) -> str:
        """
        Log in with client credentials and return a bearer token.

        Args:
            client_id: Client ID (defaults to configured value)
            client_secret: Client secret (defaults to configured value)

        Returns:
            JWT issued by the registry

        Raises:
            RegistryAuthenticationError: If login fails or no token is returned
        """
        client_id = client_id or self.client_id
        client_secret = client_secret or self.client_secret

        if not client_id or not client_secret:
            raise RegistryAuthenticationError("Registry client_id and client_secret are required")

        response = self.request(
            'POST', '/api/auth/client/login',
            body={'clientID': client_id, 'clientSecret': client_secret},
            authenticated=False
        )

        token = response.get('token') if isinstance(response, dict) else None
        if not token:
            raise RegistryAuthenticationError("Registry login response did not contain a token")

        return token

    def authenticate(self) -> str:
        """Log in and use the obtained token for all later requests."""
        token = self.get_token()
        self.auth_headers['Authorization'] = f"Bearer {token}"
        logger.info(f"Authenticated with registry {self.host}")
        return token

    def _list_page(self, resource: str, page_number: int, page_size: int) -> Tuple[List[Dict[str, Any]], int]:
        """Fetch one page of a list endpoint and return (items, total_pages)."""
        response = self.request('GET', f"/api/{resource}?page[number]={page_number}&page[size]={page_size}")

        try:
            items = response.get('items') or []
            total_pages = int((response.get('pagination') or {}).get('totalPages', 0))
        except (AttributeError, TypeError, ValueError) as e:
            raise RegistryDecodeError(f"Unexpected {resource} list response: {e}", json.dumps(response)) from e

        logger.debug(f"Fetched {len(items)} {resource} on page {page_number}")
        return items, total_pages

    def list_organizations_page(self, page_number: int, page_size: int) -> Tuple[List[Organization], int]:
        items, total_pages = self._list_page('organizations', page_number, page_size)
        return [Organization.from_dict(i) for i in items], total_pages

    def list_groups_page(self, page_number: int, page_size: int) -> Tuple[List[RegistryGroup], int]:
        items, total_pages = self._list_page('groups', page_number, page_size)
        return [RegistryGroup.from_dict(i) for i in items], total_pages

    def list_users_page(self, page_number: int, page_size: int) -> Tuple[List[RegistryUser], int]:
        items, total_pages = self._list_page('users', page_number, page_size)
        return [RegistryUser.from_dict(i) for i in items], total_pages

    def get_organizations(self, cancel_event: Optional[threading.Event] = None) -> List[Organization]:
        return fetch_all_pages(self.list_organizations_page, self.page_size,
                               cancel_event=cancel_event, description='organizations')

    def get_groups(self, cancel_event: Optional[threading.Event] = None) -> List[RegistryGroup]:
        return fetch_all_pages(self.list_groups_page, self.page_size,
                               cancel_event=cancel_event, description='groups')

    def get_users(self, cancel_event: Optional[threading.Event] = None) -> List[RegistryUser]:
        return fetch_all_pages(self.list_users_page, self.page_size,
                               cancel_event=cancel_event, description='users')

    def create_group(self, group: RegistryGroup):
        """
        Create a group in the registry.

        Raises:
            RegistryAPIError: If the registry does not acknowledge creation with 201
        """
        logger.debug(f"Creating registry group '{group.name}'")
        self.request('POST', '/api/groups', body=group.to_dict(), allowed_status=(201,))

    def update_group(self, group_id: str, group: RegistryGroup):
        """
        Replace a registry group's record.

        Raises:
            RegistryAPIError: If the update fails
        """
        if not group_id:
            raise RegistryAPIError(f"Cannot update group '{group.name}' without an id")

        logger.debug(f"Updating registry group {group_id} to '{group.name}'")
        self.request('PUT', f"/api/groups/{group_id}", body=group.to_dict())

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close_connection()
