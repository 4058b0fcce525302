"""
Group roster adapters for diffsync
"""

import logging
from typing import Optional

from diffsync import Adapter

from errors import SyncError
from models import GroupMembership
from records import Action, GroupPair, MembershipStatus, PageReport, Role, SyncResult
from stores import CommunityStore, DirectoryStore


logger = logging.getLogger(__name__)


class RosterAdapter(Adapter):
    """
    Roster of one group. Changes computed by diffsync are queued on
    pending_operations and applied through the reconciler afterwards.
    """

    membership = GroupMembership
    top_level = ["membership"]

    def __init__(self, *args, reconciler=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.reconciler = reconciler
        self.pending_operations: list = []

    def _add_membership(self, group_id: int, member_id: int, role: Role, is_active: bool) -> None:
        """Helper to create and add a membership object."""
        membership = GroupMembership(
            group_id=group_id,
            member_id=member_id,
            role=role.value,
            is_active=is_active,
        )
        self.add(membership)
        logger.debug(f"Loaded membership: {member_id} -> {group_id} ({role.value})")

    def apply(self, operation: str, group_id: int, member_id: int, role: Role,
              previous_role: Optional[Role], is_active: bool) -> SyncResult:
        raise NotImplementedError

    def execute_pending_operations(self) -> PageReport:
        """Execute all pending operations that were queued during sync."""
        report = PageReport()
        if not self.pending_operations:
            logger.info("No pending operations to execute")
            return report

        logger.info(f"Executing {len(self.pending_operations)} pending operations")

        for operation, group_id, member_id, role, previous_role, is_active in self.pending_operations:
            report.processed += 1
            try:
                result = self.apply(
                    operation,
                    group_id,
                    member_id,
                    Role(role),
                    Role(previous_role) if previous_role else None,
                    is_active,
                )
            except SyncError as e:
                logger.error(f"Failed to {operation} member {member_id} of group {group_id}: {e}")
                report.failed += 1
                continue
            if result.skipped:
                report.skipped += 1
            elif result.changed:
                report.changed += 1

        # Clear the pending operations
        self.pending_operations = []
        return report


class CommunityRosterAdapter(RosterAdapter):
    """Members of one Community group."""

    def __init__(self, *args, community: CommunityStore = None, group_id: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        self.community = community
        self.group_id = group_id

    def load(self):
        for membership in self.community.group_members(self.group_id):
            self._add_membership(
                self.group_id, membership.member_id, membership.role, membership.is_active
            )
        logger.info(f"Loaded {len(self.get_all('membership'))} members of Community group {self.group_id}")

    def apply(self, operation, group_id, member_id, role, previous_role, is_active):
        reconciler = self.reconciler
        if operation == 'create':
            added = reconciler.community_add(group_id, member_id, is_admin=role is Role.ADMIN)
            promoted = False
            if not added and role is Role.ADMIN:
                promoted = reconciler.community_promote(group_id, member_id)
            return SyncResult(member_mirror_changed=added, acl_mirror_changed=promoted)
        if operation == 'update':
            # Account activity is not a per-group property on the Community side
            return SyncResult(acl_mirror_changed=reconciler.community_set_role(group_id, member_id, role))
        removed = reconciler.community_remove(group_id, member_id)
        return SyncResult(member_mirror_changed=removed, removed=int(removed))


class DirectoryRosterAdapter(RosterAdapter):
    """
    Members of one Community group as recorded in its mirror pair.
    A contact is an admin when it is also in the access-control mirror.
    """

    def __init__(self, *args, directory: DirectoryStore = None,
                 pair: Optional[GroupPair] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.directory = directory
        self.pair = pair

    def load(self):
        pair = self.pair
        admins = {
            contact.contact_id
            for contact in self.directory.group_contacts_for_group(pair.acl_group_id)
        }
        loaded = set()
        for contact in self.directory.group_contacts_for_group(pair.member_group_id):
            member_id = contact.member_id or self.reconciler.member_id_for(contact.contact_id)
            if member_id is None:
                logger.debug(f"Contact {contact.contact_id} has no Community member, skipping")
                continue
            role = Role.ADMIN if contact.contact_id in admins else Role.MEMBER
            self._add_membership(
                pair.community_group_id,
                member_id,
                role,
                contact.status is MembershipStatus.ADDED,
            )
            loaded.add(contact.contact_id)
        for contact_id in sorted(admins - loaded):
            logger.warning(
                f"Contact {contact_id} is in access-control mirror {pair.acl_group_id} "
                f"but not in membership mirror {pair.member_group_id}"
            )
        logger.info(
            f"Loaded {len(self.get_all('membership'))} members of mirror pair "
            f"{pair.member_group_id}/{pair.acl_group_id}"
        )

    def apply(self, operation, group_id, member_id, role, previous_role, is_active):
        if operation == 'create':
            # A new regular member may still hold a stray access-control record
            return self.reconciler.sync_membership(
                group_id, member_id, Action.ADD, role,
                previous_role=Role.ADMIN if role is Role.MEMBER else None,
                is_active=is_active, pair=self.pair,
            )
        if operation == 'update':
            return self.reconciler.sync_membership(
                group_id, member_id, Action.ADD, role,
                previous_role=previous_role, is_active=is_active, pair=self.pair,
            )
        return self.reconciler.sync_membership(
            group_id, member_id, Action.REMOVE, previous_role or role, pair=self.pair
        )
