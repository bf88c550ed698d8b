"""
Data model for registry and directory entities.

Registry entities map to the JSON documents exchanged with the registry API;
directory entities are the minimal views of directory groups and members the
reconciler needs.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Any, Optional


@dataclass(frozen=True)
class GroupIdentity:
    """Reference from a registry group to a group in an external provider."""

    provider: str
    id: str
    name: str = ''

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'GroupIdentity':
        return GroupIdentity(
            provider=data.get('provider', ''),
            id=data.get('id', ''),
            name=data.get('name', ''),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'provider': self.provider, 'id': self.id, 'name': self.name}


@dataclass
class RegistryGroup:
    """
    Group record owned by the registry.

    Attributes:
        id: Identifier assigned by the registry (empty until created)
        name: Display name
        identities: Ordered identity references linking the group to providers
        extra: Any other fields returned by the registry, sent back untouched
    """

    id: str = ''
    name: str = ''
    identities: List[GroupIdentity] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'RegistryGroup':
        extra = {k: v for k, v in data.items() if k not in ('id', 'name', 'identities')}
        return RegistryGroup(
            id=data.get('id', ''),
            name=data.get('name', ''),
            identities=[GroupIdentity.from_dict(i) for i in data.get('identities') or []],
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        if self.id:
            data['id'] = self.id
        data['name'] = self.name
        data['identities'] = [i.to_dict() for i in self.identities]
        return data

    def renamed(self, name: str) -> 'RegistryGroup':
        """Return a copy of the group carrying a new display name."""
        return replace(self, name=name, identities=list(self.identities), extra=dict(self.extra))


@dataclass
class RegistryUser:
    id: str = ''
    name: str = ''
    email: str = ''

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'RegistryUser':
        return RegistryUser(
            id=data.get('id', ''),
            name=data.get('name', ''),
            email=data.get('email', ''),
        )


@dataclass
class Organization:
    id: str = ''
    name: str = ''

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'Organization':
        return Organization(id=data.get('id', ''), name=data.get('name', ''))


@dataclass(frozen=True)
class DirectoryGroup:
    """
    Group as listed by the directory service.

    Attributes:
        email: Unique, email-like external identifier of the group
        name: Display name, including the configured prefix
    """

    email: str
    name: str


@dataclass(frozen=True)
class DirectoryMember:
    id: str
    email: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None


# Directory group external ID -> ordered member list, rebuilt every run
MembershipMap = Dict[str, List[DirectoryMember]]
