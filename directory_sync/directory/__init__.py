"""
Directory backends for directory sync.
"""

import threading
from typing import Dict, Any, Optional

from directory_sync.directory.base import DirectoryClient, DirectoryError, filter_prefixed_groups


def create_directory_client(config: Dict[str, Any], cancel_event: Optional[threading.Event] = None) -> DirectoryClient:
    """
    Build the directory client selected by the configuration.

    Args:
        config: Full application configuration
        cancel_event: Optional run-wide cancel event

    Returns:
        Directory client for directory.type
    """
    directory_config = config['directory']
    directory_type = directory_config.get('type', 'google_workspace')
    group_prefix = directory_config['group_prefix']
    retry_config = config.get('error_handling', {})

    if directory_type == 'google_workspace':
        from directory_sync.directory.google_workspace import GoogleWorkspaceDirectoryClient
        return GoogleWorkspaceDirectoryClient(
            directory_config['google_workspace'], group_prefix, retry_config, cancel_event
        )

    if directory_type == 'ldap':
        from directory_sync.directory.ldap import LDAPDirectoryClient
        return LDAPDirectoryClient(directory_config['ldap'], group_prefix, retry_config, cancel_event)

    raise DirectoryError(f"Unsupported directory type: {directory_type}")


__all__ = ['DirectoryClient', 'DirectoryError', 'filter_prefixed_groups', 'create_directory_client']
