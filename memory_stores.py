"""
In-memory record stores.

These implement the store contracts on plain dicts so the engine can be
exercised without a Directory, Community or ACL server. Every write is
appended to `operations`, and any operation name listed in `fail_on`
(optionally qualified, e.g. "group_create:acl") raises the store's error.
"""

import copy
from typing import Dict, Iterable, List, Optional, Set, Tuple

from errors import AclError, CommunityError, DirectoryError
from records import (
    CommunityGroup,
    CommunityMembership,
    DirectoryGroup,
    GroupContact,
    MembershipStatus,
)
from stores import AclCollaborator, CommunityStore, DirectoryStore


class _FailureInjection:
    error_class = Exception

    def __init__(self):
        self.fail_on: Set[str] = set()
        self.operations: List[tuple] = []

    def _check(self, operation: str, *qualifiers) -> None:
        names = {operation} | {f"{operation}:{q}" for q in qualifiers}
        if names & self.fail_on:
            raise self.error_class(f"Injected failure in {operation}")

    def _record(self, *operation) -> None:
        self.operations.append(operation)

    def count(self, operation: str) -> int:
        return sum(1 for op in self.operations if op[0] == operation)


class InMemoryDirectoryStore(_FailureInjection, DirectoryStore):
    """Directory store backed by dicts."""

    error_class = DirectoryError

    def __init__(self):
        super().__init__()
        self.groups: Dict[int, DirectoryGroup] = {}
        self.memberships: Dict[Tuple[int, int], MembershipStatus] = {}
        self.edges: Set[Tuple[int, int]] = set()
        self.contacts: Dict[int, int] = {}
        self._next_id = 100

    def add_contact(self, member_id: int, contact_id: int) -> None:
        """Record the correspondence between a Community member and a contact."""
        self.contacts[member_id] = contact_id

    def active_contacts(self, group_id: int) -> Set[int]:
        return {
            contact_id for (gid, contact_id), status in self.memberships.items()
            if gid == group_id and status != MembershipStatus.REMOVED
        }

    def _group_copy(self, group: DirectoryGroup) -> DirectoryGroup:
        found = copy.copy(group)
        found.parents = sorted(parent for child, parent in self.edges if child == group.id)
        return found

    def group_create(self, title, description, source, kind, is_active=True):
        self._check("group_create", kind.value if kind else "container")
        self._next_id += 1
        group = DirectoryGroup(
            id=self._next_id,
            title=title,
            description=description,
            source=source,
            is_active=is_active,
            kind=kind,
        )
        self.groups[group.id] = group
        self._record("group_create", group.id, source)
        return self._group_copy(group)

    def group_update(self, group_id, title=None, description=None, is_active=None):
        self._check("group_update", group_id)
        group = self.groups.get(group_id)
        if group is None:
            raise DirectoryError(f"Group {group_id} does not exist")
        if title is not None:
            group.title = title
        if description is not None:
            group.description = description
        if is_active is not None:
            group.is_active = is_active
        self._record("group_update", group_id)
        return self._group_copy(group)

    def group_delete(self, group_id):
        self._check("group_delete", group_id)
        self.groups.pop(group_id, None)
        self.edges = {(c, p) for c, p in self.edges if group_id not in (c, p)}
        self._record("group_delete", group_id)

    def group_get_by_id(self, group_id):
        self._check("group_get_by_id")
        group = self.groups.get(group_id)
        return self._group_copy(group) if group else None

    def group_get_by_source(self, source):
        self._check("group_get_by_source")
        return [self._group_copy(g) for g in self.groups.values() if g.source == source]

    def groups_get_by_source_prefix(self, prefix):
        self._check("groups_get_by_source_prefix")
        return [
            self._group_copy(g) for g in sorted(self.groups.values(), key=lambda g: g.id)
            if g.source.startswith(prefix)
        ]

    def membership_get(self, group_id, contact_id):
        self._check("membership_get")
        status = self.memberships.get((group_id, contact_id))
        if status is None:
            return None
        return self._group_contact(group_id, contact_id, status)

    def membership_create(self, group_id, contact_id, status=MembershipStatus.ADDED):
        self._check("membership_create", group_id)
        self.memberships[(group_id, contact_id)] = status
        self._record("membership_create", group_id, contact_id, status)
        return self._group_contact(group_id, contact_id, status)

    def membership_delete(self, group_id, contact_id):
        self._check("membership_delete", group_id)
        self.memberships[(group_id, contact_id)] = MembershipStatus.REMOVED
        self._record("membership_delete", group_id, contact_id)
        return self._group_contact(group_id, contact_id, MembershipStatus.REMOVED)

    def _group_contact(self, group_id, contact_id, status):
        group = self.groups.get(group_id)
        member_id = next((m for m, c in self.contacts.items() if c == contact_id), None)
        return GroupContact(
            group_id=group_id,
            contact_id=contact_id,
            status=status,
            member_id=member_id,
            group_source=group.source if group else "",
        )

    def group_contacts_get(self, source_prefix, limit=0, offset=0,
                           statuses=(MembershipStatus.ADDED,)):
        self._check("group_contacts_get")
        rows = [
            self._group_contact(gid, cid, status)
            for (gid, cid), status in sorted(self.memberships.items())
            if status in statuses
            and gid in self.groups
            and self.groups[gid].source.startswith(source_prefix)
        ]
        if limit:
            return rows[offset:offset + limit]
        return rows[offset:]

    def group_contacts_for_group(self, group_id):
        self._check("group_contacts_for_group")
        return [
            self._group_contact(gid, cid, status)
            for (gid, cid), status in sorted(self.memberships.items())
            if gid == group_id and status != MembershipStatus.REMOVED
        ]

    def hierarchy_get(self, group_id):
        self._check("hierarchy_get")
        return sorted(parent for child, parent in self.edges if child == group_id)

    def hierarchy_create(self, group_id, parent_id):
        self._check("hierarchy_create")
        self.edges.add((group_id, parent_id))
        self._record("hierarchy_create", group_id, parent_id)

    def hierarchy_delete(self, group_id, parent_id):
        self._check("hierarchy_delete")
        self.edges.discard((group_id, parent_id))
        self._record("hierarchy_delete", group_id, parent_id)

    def contact_id_by_member_id(self, member_id):
        self._check("contact_id_by_member_id")
        self._record("contact_id_by_member_id", member_id)
        return self.contacts.get(member_id)

    def member_id_by_contact_id(self, contact_id):
        self._check("member_id_by_contact_id")
        self._record("member_id_by_contact_id", contact_id)
        return next((m for m, c in self.contacts.items() if c == contact_id), None)

    def ping(self):
        self._check("ping")


class InMemoryCommunityStore(_FailureInjection, CommunityStore):
    """Community store backed by dicts."""

    error_class = CommunityError

    def __init__(self, sync_groups: Optional[Iterable[int]] = None):
        super().__init__()
        self.groups: Dict[int, CommunityGroup] = {}
        # group id -> {member id: is admin}
        self.members: Dict[int, Dict[int, bool]] = {}
        self.inactive: Set[int] = set()
        self.sync_groups = set(sync_groups) if sync_groups is not None else None

    def add_group(self, group_id: int, name: str, description: str = "",
                  parent_id: int = 0) -> CommunityGroup:
        group = CommunityGroup(id=group_id, name=name, description=description, parent_id=parent_id)
        self.groups[group_id] = group
        self.members.setdefault(group_id, {})
        return group

    def group_get(self, group_id):
        self._check("group_get")
        group = self.groups.get(group_id)
        return copy.copy(group) if group else None

    def group_ids(self):
        self._check("group_ids")
        return sorted(gid for gid in self.groups if self.should_sync(gid))

    def _membership(self, group_id, member_id, is_admin):
        return CommunityMembership(
            group_id=group_id,
            member_id=member_id,
            is_admin=is_admin,
            is_active=member_id not in self.inactive,
        )

    def memberships_get(self, limit=0, offset=0):
        self._check("memberships_get")
        rows = [
            self._membership(gid, mid, is_admin)
            for gid in sorted(self.members) if gid in self.groups and self.should_sync(gid)
            for mid, is_admin in sorted(self.members[gid].items())
        ]
        if limit:
            return rows[offset:offset + limit]
        return rows[offset:]

    def group_members(self, group_id):
        self._check("group_members")
        return [
            self._membership(group_id, mid, is_admin)
            for mid, is_admin in sorted(self.members.get(group_id, {}).items())
        ]

    def is_member(self, group_id, member_id):
        self._check("is_member")
        return member_id in self.members.get(group_id, {})

    def is_admin(self, group_id, member_id):
        self._check("is_admin")
        return self.members.get(group_id, {}).get(member_id, False)

    def member_is_active(self, member_id):
        self._check("member_is_active")
        return member_id not in self.inactive

    def member_add(self, group_id, member_id, is_admin=False):
        self._check("member_add", group_id)
        self.members.setdefault(group_id, {})[member_id] = is_admin
        self._record("member_add", group_id, member_id, is_admin)

    def member_remove(self, group_id, member_id):
        self._check("member_remove", group_id)
        self.members.get(group_id, {}).pop(member_id, None)
        self._record("member_remove", group_id, member_id)

    def member_promote(self, group_id, member_id):
        self._check("member_promote", group_id)
        if member_id in self.members.get(group_id, {}):
            self.members[group_id][member_id] = True
        self._record("member_promote", group_id, member_id)

    def member_demote(self, group_id, member_id):
        self._check("member_demote", group_id)
        if member_id in self.members.get(group_id, {}):
            self.members[group_id][member_id] = False
        self._record("member_demote", group_id, member_id)

    def ping(self):
        self._check("ping")


class InMemoryAcl(_FailureInjection, AclCollaborator):
    """ACL collaborator backed by a set of (acl group, member group) links."""

    error_class = AclError

    def __init__(self):
        super().__init__()
        self.links: Set[Tuple[int, int]] = set()

    def link(self, acl_group_id, member_group_id):
        self._check("link")
        self.links.add((acl_group_id, member_group_id))
        self._record("link", acl_group_id, member_group_id)

    def unlink(self, acl_group_id, member_group_id):
        self._check("unlink")
        self.links.discard((acl_group_id, member_group_id))
        self._record("unlink", acl_group_id, member_group_id)

    def is_linked(self, acl_group_id, member_group_id):
        self._check("is_linked")
        return (acl_group_id, member_group_id) in self.links

    def ping(self):
        self._check("ping")
