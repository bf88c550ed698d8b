"""
Reconciliation of registry groups against directory groups.

The reconciler first plans the full list of registry changes for a run and
then applies them in order. Matched registry groups are renamed after their
directory counterpart; unmatched directory groups with at least one member are
created in the registry. Registry groups without a directory counterpart are
left alone.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from directory_sync.errors import SyncError
from directory_sync.logging_setup import audit_logger
from directory_sync.matcher import DIRECTORY_PROVIDER, matches
from directory_sync.models import (
    RegistryGroup, GroupIdentity, DirectoryGroup, MembershipMap
)

logger = logging.getLogger(__name__)

ACTION_UPDATE = 'update'
ACTION_CREATE = 'create'


def strip_prefix(name: str, prefix: str) -> str:
    """Remove prefix from the start of name if it is there."""
    if prefix and name.startswith(prefix):
        return name[len(prefix):]
    return name


@dataclass
class SyncAction:
    """Single registry change planned by the reconciler."""

    action_type: str
    group: RegistryGroup
    directory_group: DirectoryGroup

    def describe(self) -> str:
        if self.action_type == ACTION_UPDATE:
            return f"update group {self.group.id} to '{self.group.name}' from {self.directory_group.email}"
        return f"create group '{self.group.name}' for {self.directory_group.email}"


class ReconcileError(SyncError):
    """Raised when a registry change fails; the rest of the plan is not applied."""

    def __init__(self, action: SyncAction, cause: BaseException, applied: int = 0):
        super().__init__(f"Failed to {action.describe()}: {cause}")
        self.action = action
        self.cause = cause
        self.applied = applied


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation pass."""

    actions: List[SyncAction] = field(default_factory=list)
    groups_updated: int = 0
    groups_created: int = 0
    unmatched_registry_groups: int = 0
    skipped_empty_groups: int = 0
    dry_run: bool = False

    @property
    def planned_updates(self) -> int:
        return sum(1 for a in self.actions if a.action_type == ACTION_UPDATE)

    @property
    def planned_creates(self) -> int:
        return sum(1 for a in self.actions if a.action_type == ACTION_CREATE)


class Reconciler:
    """
    Plans and applies registry group changes for one sync run.

    The registry client must provide ``update_group(group_id, group)`` and
    ``create_group(group)``; both raise on failure.
    """

    def __init__(self, registry_client, group_prefix: str,
                 provider: str = DIRECTORY_PROVIDER, dry_run: bool = False):
        """
        Initialize reconciler.

        Args:
            registry_client: Client used to issue create and update calls
            group_prefix: Prefix of directory group names, stripped for registry names
            provider: Provider tag used in registry identity references
            dry_run: If True, log planned changes without applying them
        """
        self.registry_client = registry_client
        self.group_prefix = group_prefix
        self.provider = provider
        self.dry_run = dry_run

    def reconcile(self, registry_groups: List[RegistryGroup], directory_groups: List[DirectoryGroup],
                  membership: MembershipMap) -> ReconcileResult:
        """
        Bring the registry in line with the directory.

        Args:
            registry_groups: Every group currently in the registry
            directory_groups: Every prefixed group in the directory
            membership: Members per directory group external ID

        Returns:
            ReconcileResult with the planned actions and applied counts

        Raises:
            ReconcileError: If a create or update call fails
        """
        result = self.plan(registry_groups, directory_groups, membership)
        self.apply(result)
        return result

    def plan(self, registry_groups: List[RegistryGroup], directory_groups: List[DirectoryGroup],
             membership: MembershipMap) -> ReconcileResult:
        """
        Compute registry changes without touching the registry.

        Updates come first, in registry order, followed by creates in
        directory order.
        """
        result = ReconcileResult(dry_run=self.dry_run)

        for registry_group in registry_groups:
            matched = False
            for directory_group in directory_groups:
                if not matches(registry_group, directory_group, self.provider):
                    continue
                matched = True
                # A group referring to several directory groups gets one update per match
                renamed = registry_group.renamed(strip_prefix(directory_group.name, self.group_prefix))
                result.actions.append(SyncAction(ACTION_UPDATE, renamed, directory_group))

            if not matched:
                # Orphaned registry groups are never deactivated
                result.unmatched_registry_groups += 1
                logger.debug(f"Registry group {registry_group.id} '{registry_group.name}' has no directory counterpart")

        for directory_group in directory_groups:
            if any(matches(g, directory_group, self.provider) for g in registry_groups):
                continue

            members = membership.get(directory_group.email) or []
            if not members:
                result.skipped_empty_groups += 1
                logger.debug(f"Skipping directory group {directory_group.email} without members")
                continue

            new_group = RegistryGroup(
                name=strip_prefix(directory_group.name, self.group_prefix),
                identities=[
                    GroupIdentity(provider=self.provider, id=directory_group.email, name=directory_group.name)
                ],
            )
            result.actions.append(SyncAction(ACTION_CREATE, new_group, directory_group))

        logger.info(f"Planned {result.planned_updates} group updates and {result.planned_creates} group creations "
                    f"({result.unmatched_registry_groups} registry groups unmatched, "
                    f"{result.skipped_empty_groups} empty directory groups skipped)")
        return result

    def apply(self, result: ReconcileResult) -> ReconcileResult:
        """
        Apply planned actions in order, stopping at the first failure.

        Raises:
            ReconcileError: If a registry call fails
        """
        applied = 0
        for action in result.actions:
            if self.dry_run:
                logger.info(f"[dry-run] Would {action.describe()}")
                continue

            try:
                if action.action_type == ACTION_UPDATE:
                    self.registry_client.update_group(action.group.id, action.group)
                    result.groups_updated += 1
                else:
                    self.registry_client.create_group(action.group)
                    result.groups_created += 1
            except Exception as e:
                logger.error(f"Failed to {action.describe()}: {e}")
                audit_logger.log_group_change(action.action_type, action.group.name, action.directory_group.email, False)
                raise ReconcileError(action, e, applied) from e

            applied += 1
            audit_logger.log_group_change(action.action_type, action.group.name, action.directory_group.email, True)
            logger.info(f"Applied: {action.describe()}")

        return result
