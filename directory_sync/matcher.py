"""
Matching of registry groups to directory groups.

A registry group mirrors a directory group when one of its identity references
names the directory provider and carries the directory group's external ID.
"""

from typing import List

from directory_sync.models import RegistryGroup, DirectoryGroup

DIRECTORY_PROVIDER = 'gsuite'


def matches(registry_group: RegistryGroup, directory_group: DirectoryGroup,
            provider: str = DIRECTORY_PROVIDER) -> bool:
    """
    Check whether a registry group refers to a directory group.

    Args:
        registry_group: Group from the registry
        directory_group: Group from the directory service
        provider: Provider tag identifying directory identity references

    Returns:
        True if any identity of the registry group has the given provider and
        an ID equal to the directory group's email
    """
    return any(
        identity.provider == provider and identity.id == directory_group.email
        for identity in registry_group.identities
    )


def find_matching_registry_groups(registry_groups: List[RegistryGroup], directory_group: DirectoryGroup,
                                  provider: str = DIRECTORY_PROVIDER) -> List[RegistryGroup]:
    """Return every registry group referring to the directory group, in registry order."""
    return [group for group in registry_groups if matches(group, directory_group, provider)]


def find_matching_directory_groups(registry_group: RegistryGroup, directory_groups: List[DirectoryGroup],
                                   provider: str = DIRECTORY_PROVIDER) -> List[DirectoryGroup]:
    """Return every directory group the registry group refers to, in directory order."""
    return [group for group in directory_groups if matches(registry_group, group, provider)]
