"""
Common interface of the directory backends.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from directory_sync.errors import DirectoryError
from directory_sync.models import DirectoryGroup, DirectoryMember

logger = logging.getLogger(__name__)

__all__ = ['DirectoryClient', 'DirectoryError', 'filter_prefixed_groups']


def filter_prefixed_groups(groups: List[DirectoryGroup], prefix: str) -> List[DirectoryGroup]:
    """Keep only groups whose display name starts with prefix, preserving order."""
    kept = [group for group in groups if group.name.startswith(prefix)]
    if len(kept) != len(groups):
        logger.debug(f"Discarded {len(groups) - len(kept)} directory groups without prefix '{prefix}'")
    return kept


class DirectoryClient(ABC):
    """
    Read-only view of an identity directory.

    Implementations must allow ``get_group_members`` to be called from
    several threads at once.
    """

    def __init__(self, group_prefix: str, cancel_event: Optional[threading.Event] = None):
        self.group_prefix = group_prefix
        self.cancel_event = cancel_event

    @abstractmethod
    def list_groups(self) -> List[DirectoryGroup]:
        """
        List every directory group carrying the configured name prefix.

        Raises:
            DirectoryError: If the directory cannot be queried
            PaginationError: If a page of the listing fails
        """

    @abstractmethod
    def get_group_members(self, group: DirectoryGroup) -> List[DirectoryMember]:
        """
        Return the ordered members of one group.

        Raises:
            DirectoryError: If the directory cannot be queried
            PaginationError: If a page of the listing fails
        """

    @abstractmethod
    def test_connection(self) -> bool:
        """Check connectivity without raising."""

    def close(self):
        """Release connections held by the client."""

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
