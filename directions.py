"""
Paged populate and remove work for each sync direction
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Sequence, Set, Tuple

from errors import SyncError
from records import (
    Action,
    CommunityMembership,
    Direction,
    GroupContact,
    MembershipStatus,
    MirrorKind,
    PageReport,
    Role,
    SourceTags,
)
from reconciler import MembershipReconciler
from stores import CommunityStore, DirectoryStore


logger = logging.getLogger(__name__)

# Pending mirror records are only created from Community, so only the remove
# scan has to see them
POPULATE_SCAN = (MembershipStatus.ADDED,)
REMOVE_SCAN = (MembershipStatus.ADDED, MembershipStatus.PENDING)


class DirectionPager(ABC):
    """
    Reads pages of records and applies them for one direction.

    populate_* walks the authoritative side and creates what the other side
    lacks; remove_* walks the other side and removes what has no counterpart.
    Every apply method catches failures per record and counts them.
    """

    direction: Direction

    def __init__(self, directory: DirectoryStore, community: CommunityStore,
                 reconciler: MembershipReconciler, tags: SourceTags):
        self.directory = directory
        self.community = community
        self.reconciler = reconciler
        self.tags = tags

    def _directory_page(self, limit: int, offset: int,
                        statuses: Sequence[MembershipStatus] = POPULATE_SCAN) -> List[GroupContact]:
        return self.directory.group_contacts_get(
            self.tags.prefix, limit=limit, offset=offset, statuses=statuses
        )

    def _community_page(self, limit: int, offset: int) -> List[CommunityMembership]:
        return self.community.memberships_get(limit=limit, offset=offset)

    @abstractmethod
    def populate_read(self, limit: int, offset: int) -> list:
        ...

    @abstractmethod
    def populate_apply(self, records: list) -> PageReport:
        ...

    @abstractmethod
    def remove_read(self, limit: int, offset: int) -> list:
        ...

    @abstractmethod
    def remove_apply(self, records: list) -> PageReport:
        """The report's removed count is how many of records left the listing."""


class CommunityToDirectory(DirectionPager):
    """Community is authoritative; mirror groups follow it."""

    direction = Direction.TO_DIRECTORY

    def populate_read(self, limit, offset):
        return self._community_page(limit, offset)

    def populate_apply(self, records: List[CommunityMembership]) -> PageReport:
        report = PageReport()
        failed_groups: Set[int] = set()
        for membership in records:
            report.processed += 1
            if membership.group_id in failed_groups:
                report.failed += 1
                continue
            try:
                pair = self.reconciler.pair_for(membership.group_id, create=True)
            except SyncError as e:
                logger.error(f"Could not mirror group {membership.group_id}: {e}")
                failed_groups.add(membership.group_id)
                report.failed += 1
                continue
            if pair is None:
                report.skipped += 1
                continue
            try:
                result = self.reconciler.sync_membership(
                    membership.group_id,
                    membership.member_id,
                    Action.ADD,
                    membership.role,
                    is_active=membership.is_active,
                    pair=pair,
                )
            except SyncError as e:
                logger.error(
                    f"Failed to mirror member {membership.member_id} of group "
                    f"{membership.group_id}: {e}"
                )
                report.failed += 1
                continue
            if result.skipped:
                report.skipped += 1
            elif result.changed:
                report.changed += 1
        return report

    def remove_read(self, limit, offset):
        return self._directory_page(limit, offset, REMOVE_SCAN)

    def remove_apply(self, records: List[GroupContact]) -> PageReport:
        report = PageReport()
        # Removing one mirror record can take its sibling in the other mirror with it
        left: Set[Tuple[int, int]] = set()
        for contact in records:
            report.processed += 1
            if (contact.group_id, contact.contact_id) in left:
                continue
            try:
                outcome = self._remove_stale(contact, left)
            except SyncError as e:
                logger.error(
                    f"Failed to check contact {contact.contact_id} of Directory group "
                    f"{contact.group_id}: {e}"
                )
                report.failed += 1
                continue
            if outcome is None:
                report.skipped += 1
            elif outcome:
                report.changed += 1
        report.removed = sum(1 for c in records if (c.group_id, c.contact_id) in left)
        return report

    def _remove_stale(self, contact: GroupContact, left: Set[Tuple[int, int]]):
        """
        True when the scanned record was changed, False when it is still
        valid and None when it cannot be judged. Every mirror record this
        removes is added to left.
        """
        identity = self.tags.parse(contact.group_source)
        if identity is None:
            return None
        group_id, kind = identity
        if not self.community.should_sync(group_id):
            return None
        member_id = contact.member_id or self.reconciler.member_id_for(contact.contact_id)
        if member_id is None:
            logger.debug(f"Contact {contact.contact_id} has no Community member, skipping")
            return None
        pair = self.reconciler.pair_for(group_id)
        if pair is None or pair.group_id_for(kind) != contact.group_id:
            logger.warning(
                f"Directory group {contact.group_id} is tagged for group {group_id} "
                f"but is not part of its mirror pair"
            )
            return None

        is_member = self.community.is_member(group_id, member_id)
        if kind is MirrorKind.MEMBER:
            if is_member:
                return False
            result = self.reconciler.sync_membership(
                group_id, member_id, Action.REMOVE, Role.MEMBER, pair=pair
            )
        elif is_member and self.community.is_admin(group_id, member_id):
            return False
        elif is_member:
            result = self.reconciler.sync_membership(
                group_id, member_id, Action.ADD, Role.MEMBER,
                previous_role=Role.ADMIN, pair=pair,
            )
        else:
            result = self.reconciler.sync_membership(
                group_id, member_id, Action.REMOVE, Role.ADMIN, pair=pair
            )

        # Only the remove path takes the membership mirror record out of the listing
        if result.member_mirror_changed and not is_member:
            left.add((pair.member_group_id, contact.contact_id))
        if result.acl_mirror_changed:
            left.add((pair.acl_group_id, contact.contact_id))
        return result.changed


class DirectoryToCommunity(DirectionPager):
    """Mirror groups are authoritative; Community groups follow them."""

    direction = Direction.TO_COMMUNITY

    def populate_read(self, limit, offset):
        return self._directory_page(limit, offset)

    def populate_apply(self, records: List[GroupContact]) -> PageReport:
        report = PageReport()
        for contact in records:
            report.processed += 1
            try:
                result = self.reconciler.sync_contact(
                    contact.group_id, contact.contact_id, Action.ADD, member_id=contact.member_id
                )
            except SyncError as e:
                logger.error(
                    f"Failed to mirror contact {contact.contact_id} of Directory group "
                    f"{contact.group_id}: {e}"
                )
                report.failed += 1
                continue
            if result.skipped:
                report.skipped += 1
            elif result.changed:
                report.changed += 1
        return report

    def remove_read(self, limit, offset):
        return self._community_page(limit, offset)

    def remove_apply(self, records: List[CommunityMembership]) -> PageReport:
        report = PageReport()
        for membership in records:
            report.processed += 1
            try:
                outcome = self._remove_stale(membership)
            except SyncError as e:
                logger.error(
                    f"Failed to check member {membership.member_id} of group "
                    f"{membership.group_id}: {e}"
                )
                report.failed += 1
                continue
            if outcome is None:
                report.skipped += 1
            elif outcome == "removed":
                report.changed += 1
                report.removed += 1
            elif outcome == "demoted":
                report.changed += 1
        return report

    def _remove_stale(self, membership: CommunityMembership):
        pair = self.reconciler.pair_for(membership.group_id)
        if pair is None:
            # Never wipe a group that simply has not been mirrored yet
            logger.debug(f"Group {membership.group_id} has no mirrors, skipping")
            return None
        contact_id = self.reconciler.contact_id_for(membership.member_id)
        if contact_id is None:
            logger.debug(f"Member {membership.member_id} has no contact, skipping")
            return None

        record = self.directory.membership_get(pair.member_group_id, contact_id)
        if record is None or not record.is_active:
            self.reconciler.community_remove(membership.group_id, membership.member_id)
            return "removed"
        if membership.is_admin:
            admin_record = self.directory.membership_get(pair.acl_group_id, contact_id)
            if admin_record is None or not admin_record.is_active:
                self.reconciler.community_demote(membership.group_id, membership.member_id)
                return "demoted"
        return "kept"


def build_directions(directory: DirectoryStore, community: CommunityStore,
                     reconciler: MembershipReconciler, tags: SourceTags):
    return {
        Direction.TO_DIRECTORY: CommunityToDirectory(directory, community, reconciler, tags),
        Direction.TO_COMMUNITY: DirectoryToCommunity(directory, community, reconciler, tags),
    }
