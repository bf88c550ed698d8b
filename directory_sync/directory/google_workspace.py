"""
Google Workspace directory backend.

Groups and members are read through the Admin SDK Directory API using a
service account with domain-wide delegation, or application default
credentials when no key file is configured.
"""

import logging
import threading
from typing import Dict, List, Any, Optional, Tuple

import google.auth
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from directory_sync.directory.base import DirectoryClient, filter_prefixed_groups
from directory_sync.errors import DirectoryError
from directory_sync.models import DirectoryGroup, DirectoryMember
from directory_sync.pagination import iter_token_pages

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.group.readonly",
    "https://www.googleapis.com/auth/admin.directory.group.member.readonly",
]

DEFAULT_MAX_RESULTS = 200


class GoogleWorkspaceDirectoryClient(DirectoryClient):
    """
    Directory client for Google Workspace.

    A googleapiclient Resource is not thread-safe, so every thread builds and
    keeps its own service object from the shared credentials.
    """

    def __init__(self, config: Dict[str, Any], group_prefix: str,
                 retry_config: Optional[Dict[str, Any]] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize Google Workspace client.

        Args:
            config: directory.google_workspace configuration section
            group_prefix: Display name prefix of synced groups
            retry_config: error_handling configuration section
            cancel_event: Optional run-wide cancel event
        """
        super().__init__(group_prefix, cancel_event)
        self.domain = config['domain']
        self.admin_email = config['admin_email']
        self.credentials_file = config.get('credentials_file')
        self.max_results = config.get('max_results', DEFAULT_MAX_RESULTS)
        # googleapiclient retries 429 and 5xx responses itself
        self.num_retries = (retry_config or {}).get('max_retries', 3)

        self._credentials = None
        self._local = threading.local()
        self._lock = threading.Lock()
        self._services = []

    def _get_credentials(self):
        with self._lock:
            if self._credentials is None:
                try:
                    if self.credentials_file:
                        creds = service_account.Credentials.from_service_account_file(
                            self.credentials_file, scopes=SCOPES
                        )
                    else:
                        creds, _ = google.auth.default(scopes=SCOPES)
                except (OSError, ValueError, GoogleAuthError) as e:
                    raise DirectoryError(f"Failed to load Google credentials: {e}") from e

                # Domain-wide delegation; user credentials from ADC cannot impersonate
                if hasattr(creds, 'with_subject'):
                    creds = creds.with_subject(self.admin_email)
                self._credentials = creds
                logger.debug(f"Loaded Google credentials acting as {self.admin_email}")

        return self._credentials

    def _get_service(self):
        service = getattr(self._local, 'service', None)
        if service is None:
            credentials = self._get_credentials()
            try:
                service = build('admin', 'directory_v1', credentials=credentials, cache_discovery=False)
            except (HttpError, GoogleAuthError, OSError) as e:
                raise DirectoryError(f"Failed to build Admin SDK service: {e}") from e
            self._local.service = service
            with self._lock:
                self._services.append(service)
        return service

    def _execute(self, request, description: str) -> Dict[str, Any]:
        try:
            return request.execute(num_retries=self.num_retries)
        except HttpError as e:
            raise DirectoryError(f"Admin SDK {description} failed with status {e.resp.status}: {e}") from e
        except (GoogleAuthError, OSError) as e:
            raise DirectoryError(f"Admin SDK {description} failed: {e}") from e

    def _list_groups_page(self, page_token: Optional[str]) -> Tuple[List[DirectoryGroup], Optional[str]]:
        request = self._get_service().groups().list(
            domain=self.domain, maxResults=self.max_results, pageToken=page_token
        )
        response = self._execute(request, 'groups.list')
        groups = [
            DirectoryGroup(email=g['email'], name=g.get('name', ''))
            for g in response.get('groups', [])
        ]
        return groups, response.get('nextPageToken')

    def list_groups(self) -> List[DirectoryGroup]:
        groups = iter_token_pages(
            self._list_groups_page, cancel_event=self.cancel_event, description='directory groups'
        )
        prefixed = filter_prefixed_groups(groups, self.group_prefix)
        logger.info(f"Found {len(prefixed)} groups with prefix '{self.group_prefix}' "
                    f"out of {len(groups)} in domain {self.domain}")
        return prefixed

    def get_group_members(self, group: DirectoryGroup) -> List[DirectoryMember]:
        def fetch_page(page_token: Optional[str]) -> Tuple[List[DirectoryMember], Optional[str]]:
            request = self._get_service().members().list(
                groupKey=group.email, maxResults=self.max_results, pageToken=page_token
            )
            response = self._execute(request, f"members.list for {group.email}")
            members = [
                DirectoryMember(
                    id=m.get('id', ''),
                    email=m.get('email'),
                    type=m.get('type'),
                    status=m.get('status'),
                )
                for m in response.get('members', [])
            ]
            return members, response.get('nextPageToken')

        return iter_token_pages(fetch_page, cancel_event=self.cancel_event,
                                description=f"members of {group.email}")

    def test_connection(self) -> bool:
        try:
            request = self._get_service().groups().list(domain=self.domain, maxResults=1)
            self._execute(request, 'groups.list')
            return True
        except DirectoryError as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def close(self):
        with self._lock:
            services, self._services = self._services, []
        for service in services:
            try:
                service.close()
            except Exception as e:
                logger.warning(f"Error closing Admin SDK service: {e}")
        self._local = threading.local()
