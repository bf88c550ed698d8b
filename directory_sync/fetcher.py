"""
Bounded-concurrency member fetching.

Member lists are fetched per directory group on a fixed-size thread pool so
many small directory calls run in parallel without exceeding the directory
service's tolerance for simultaneous requests.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future, CancelledError, as_completed
from typing import Callable, Dict, List, Optional

from directory_sync.errors import SyncError, OperationCancelled
from directory_sync.models import DirectoryGroup, DirectoryMember, MembershipMap

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10


class MemberFetchError(SyncError):
    """
    Raised when fetching the members of at least one group failed.

    Attributes:
        group_key: External ID of the group whose fetch failed first
        cause: Exception raised by that fetch
        failed_count: Number of groups whose fetch failed
    """

    def __init__(self, group_key: str, cause: BaseException, failed_count: int = 1):
        super().__init__(f"Failed fetching members of group {group_key}: {cause}")
        self.group_key = group_key
        self.cause = cause
        self.failed_count = failed_count


class BoundedFetcher:
    """
    Fetches member lists for many groups with at most ``concurrency`` calls in flight.

    The calling thread is the only writer of the resulting membership map;
    worker threads just return their result through their future.
    """

    def __init__(self, fetch_members: Callable[[DirectoryGroup], List[DirectoryMember]],
                 concurrency: int = DEFAULT_CONCURRENCY,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize the fetcher.

        Args:
            fetch_members: Callable returning the ordered members of one group
            concurrency: Maximum number of simultaneous fetches
            cancel_event: Optional run-wide cancel event
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self.fetch_members = fetch_members
        self.concurrency = concurrency
        self.cancel_event = cancel_event or threading.Event()

    def _fetch_one(self, group: DirectoryGroup) -> List[DirectoryMember]:
        if self.cancel_event.is_set():
            raise OperationCancelled(f"Member fetch for {group.email} cancelled before start")
        return self.fetch_members(group)

    def fetch(self, groups: List[DirectoryGroup]) -> MembershipMap:
        """
        Fetch the members of every group.

        All dispatched fetches are waited for before returning or raising, so
        no worker outlives this call.

        Args:
            groups: Directory groups to fetch members for

        Returns:
            Mapping of group external ID to its ordered member list

        Raises:
            MemberFetchError: If any fetch failed (first failure reported)
            OperationCancelled: If the cancel event was set during the batch
        """
        membership: MembershipMap = {}
        member_count = 0
        first_error = None
        failed_count = 0

        if not groups:
            return membership

        logger.info(f"Fetching members for {len(groups)} groups with concurrency {self.concurrency}")

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix='member-fetch') as executor:
            futures: Dict[Future, DirectoryGroup] = {
                executor.submit(self._fetch_one, group): group for group in groups
            }

            for future in as_completed(futures):
                group = futures[future]

                if self.cancel_event.is_set():
                    # Queued fetches are dropped; running ones finish on their own
                    for pending in futures:
                        pending.cancel()

                try:
                    members = future.result()
                except (CancelledError, OperationCancelled):
                    continue
                except Exception as e:
                    failed_count += 1
                    if first_error is None:
                        first_error = (group, e)
                        logger.error(f"Failed fetching members of group {group.email}: {e}")
                    else:
                        logger.debug(f"Additional member fetch failure for group {group.email}: {e}")
                    continue

                membership[group.email] = members
                member_count += len(members)
                logger.debug(f"Fetched {len(members)} members for group {group.email}")

        if self.cancel_event.is_set():
            raise OperationCancelled(
                f"Member fetch cancelled after {len(membership)} of {len(groups)} groups"
            )

        if first_error is not None:
            group, error = first_error
            raise MemberFetchError(group.email, error, failed_count)

        logger.info(f"Fetched {member_count} members across {len(membership)} groups")
        return membership
