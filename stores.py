"""
Contracts for the external record stores the sync engine talks to.

Implementations raise the matching CollaboratorError subclass
(DirectoryError, CommunityError, AclError) when a call fails.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Set

from records import (
    CommunityGroup,
    CommunityMembership,
    DirectoryGroup,
    GroupContact,
    MembershipStatus,
    MirrorKind,
)


class DirectoryStore(ABC):
    """Groups with contacts, nesting and soft-deleted memberships."""

    @abstractmethod
    def group_create(self, title: str, description: str, source: str,
                     kind: Optional[MirrorKind], is_active: bool = True) -> DirectoryGroup:
        ...

    @abstractmethod
    def group_update(self, group_id: int, title: Optional[str] = None,
                     description: Optional[str] = None,
                     is_active: Optional[bool] = None) -> DirectoryGroup:
        ...

    @abstractmethod
    def group_delete(self, group_id: int) -> None:
        ...

    @abstractmethod
    def group_get_by_id(self, group_id: int) -> Optional[DirectoryGroup]:
        ...

    @abstractmethod
    def group_get_by_source(self, source: str) -> List[DirectoryGroup]:
        """All groups whose source equals the given tag."""

    @abstractmethod
    def groups_get_by_source_prefix(self, prefix: str) -> List[DirectoryGroup]:
        ...

    @abstractmethod
    def membership_get(self, group_id: int, contact_id: int) -> Optional[GroupContact]:
        """The membership record in any status, or None if there never was one."""

    @abstractmethod
    def membership_create(self, group_id: int, contact_id: int,
                          status: MembershipStatus = MembershipStatus.ADDED) -> GroupContact:
        """Insert a membership record, or re-tag the existing one."""

    @abstractmethod
    def membership_delete(self, group_id: int, contact_id: int) -> GroupContact:
        """Mark a membership Removed. The record itself is kept."""

    @abstractmethod
    def group_contacts_get(self, source_prefix: str, limit: int = 0, offset: int = 0,
                           statuses: Sequence[MembershipStatus] = (MembershipStatus.ADDED,),
                           ) -> List[GroupContact]:
        """
        Memberships with one of statuses in groups whose source starts with
        source_prefix, ordered by group id then contact id. limit 0 means no
        limit.
        """

    @abstractmethod
    def group_contacts_for_group(self, group_id: int) -> List[GroupContact]:
        """Added and Pending memberships of one group."""

    @abstractmethod
    def hierarchy_get(self, group_id: int) -> List[int]:
        """Ids of every parent group of the given group."""

    @abstractmethod
    def hierarchy_create(self, group_id: int, parent_id: int) -> None:
        ...

    @abstractmethod
    def hierarchy_delete(self, group_id: int, parent_id: int) -> None:
        ...

    @abstractmethod
    def contact_id_by_member_id(self, member_id: int) -> Optional[int]:
        ...

    @abstractmethod
    def member_id_by_contact_id(self, contact_id: int) -> Optional[int]:
        ...

    def ping(self) -> None:
        """Raise DirectoryError when the store cannot be reached."""


class CommunityStore(ABC):
    """Groups with members, admins and at most one parent."""

    # None means every group is synced
    sync_groups: Optional[Set[int]] = None

    def should_sync(self, group_id: int) -> bool:
        return self.sync_groups is None or group_id in self.sync_groups

    @abstractmethod
    def group_get(self, group_id: int) -> Optional[CommunityGroup]:
        ...

    @abstractmethod
    def group_ids(self) -> List[int]:
        """Ids of every synced group, ascending."""

    def group_total_count(self) -> int:
        return len(self.group_ids())

    @abstractmethod
    def memberships_get(self, limit: int = 0, offset: int = 0) -> List[CommunityMembership]:
        """
        Memberships of every synced group, ordered by group id then member
        id. limit 0 means no limit.
        """

    @abstractmethod
    def group_members(self, group_id: int) -> List[CommunityMembership]:
        ...

    @abstractmethod
    def is_member(self, group_id: int, member_id: int) -> bool:
        ...

    @abstractmethod
    def is_admin(self, group_id: int, member_id: int) -> bool:
        ...

    @abstractmethod
    def member_is_active(self, member_id: int) -> bool:
        ...

    @abstractmethod
    def member_add(self, group_id: int, member_id: int, is_admin: bool = False) -> None:
        ...

    @abstractmethod
    def member_remove(self, group_id: int, member_id: int) -> None:
        ...

    @abstractmethod
    def member_promote(self, group_id: int, member_id: int) -> None:
        ...

    @abstractmethod
    def member_demote(self, group_id: int, member_id: int) -> None:
        ...

    def ping(self) -> None:
        """Raise CommunityError when the store cannot be reached."""


class AclCollaborator(ABC):
    """Grants an access-control mirror's members rights over a membership mirror."""

    @abstractmethod
    def link(self, acl_group_id: int, member_group_id: int) -> None:
        ...

    @abstractmethod
    def unlink(self, acl_group_id: int, member_group_id: int) -> None:
        ...

    @abstractmethod
    def is_linked(self, acl_group_id: int, member_group_id: int) -> bool:
        ...

    def ping(self) -> None:
        """Raise AclError when the collaborator cannot be reached."""
