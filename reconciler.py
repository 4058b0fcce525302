"""
Membership reconciliation between Community groups and their mirrors
"""

import logging
from typing import Callable, Optional

from cache import CONTACT, MEMBER, CorrespondenceCache
from events import COMMUNITY, DIRECTORY, Event, MirrorApplied
from group_mirror import GroupPairMirror
from hierarchy import HierarchyMirror
from records import (
    Action,
    Direction,
    GroupPair,
    MembershipStatus,
    MirrorKind,
    PageReport,
    Role,
    SyncResult,
)
from roster import CommunityRosterAdapter, DirectoryRosterAdapter
from stores import CommunityStore, DirectoryStore


logger = logging.getLogger(__name__)

COMMUNITY_GROUP = "community_group"


class MembershipReconciler:
    """
    Converges one member of one group at a time.

    Directory memberships are only ever soft-deleted. For a member the
    membership mirror is always written before the access-control mirror,
    so an interrupted call leaves the admins a subset of the members.
    """

    def __init__(self, directory: DirectoryStore, community: CommunityStore,
                 pairs: GroupPairMirror, hierarchy: Optional[HierarchyMirror] = None,
                 cache: Optional[CorrespondenceCache] = None,
                 publish: Optional[Callable[[Event], None]] = None):
        self.directory = directory
        self.community = community
        self.pairs = pairs
        self.hierarchy = hierarchy
        self.cache = cache if cache is not None else pairs.cache
        self.publish = publish

    def _published(self, system: str, operation: str, group_id: int, subject_id: int) -> None:
        if self.publish is not None:
            self.publish(MirrorApplied(system, operation, group_id, subject_id))

    def contact_id_for(self, member_id: int) -> Optional[int]:
        return self.cache.get_or_load(
            CONTACT, member_id, lambda: self.directory.contact_id_by_member_id(member_id)
        )

    def member_id_for(self, contact_id: int) -> Optional[int]:
        return self.cache.get_or_load(
            MEMBER, contact_id, lambda: self.directory.member_id_by_contact_id(contact_id)
        )

    def _community_group_exists(self, group_id: int) -> bool:
        return self.cache.get_or_load(
            COMMUNITY_GROUP, group_id, lambda: self.community.group_get(group_id) is not None
        )

    def pair_for(self, group_id: int, create: bool = False) -> Optional[GroupPair]:
        if not create:
            return self.pairs.find_pair(group_id)
        if self.hierarchy is not None:
            return self.hierarchy.ensure_group(group_id)
        group = self.community.group_get(group_id)
        if group is None:
            return None
        return self.pairs.ensure_pair(group)

    # Directory side

    def _is_active(self, group_id: int, contact_id: int) -> bool:
        existing = self.directory.membership_get(group_id, contact_id)
        return existing is not None and existing.is_active

    def _apply(self, group_id: int, contact_id: int,
               status: Optional[MembershipStatus]) -> bool:
        """Bring one Directory membership to status, None meaning Removed."""
        existing = self.directory.membership_get(group_id, contact_id)
        if status is None:
            if existing is None or not existing.is_active:
                return False
            self.directory.membership_delete(group_id, contact_id)
            logger.info(f"Removed contact {contact_id} from Directory group {group_id}")
            self._published(DIRECTORY, "membership_delete", group_id, contact_id)
            return True
        if existing is not None and existing.status == status:
            logger.debug(f"Contact {contact_id} already {status.value} in Directory group {group_id}")
            return False
        if existing is not None and not existing.is_active and status is MembershipStatus.PENDING:
            # A removed record only ever comes back as Added
            logger.debug(
                f"Contact {contact_id} stays Removed in Directory group {group_id} "
                f"until the account is active"
            )
            return False
        self.directory.membership_create(group_id, contact_id, status)
        logger.info(f"Set contact {contact_id} to {status.value} in Directory group {group_id}")
        self._published(DIRECTORY, "membership_create", group_id, contact_id)
        return True

    def sync_membership(self, group_id: int, member_id: int, action: Action,
                        role: Role = Role.MEMBER, previous_role: Optional[Role] = None,
                        is_active: Optional[bool] = None,
                        pair: Optional[GroupPair] = None) -> SyncResult:
        """
        Mirror one Community membership change into the group's mirror pair.

        action ADD with role ADMIN also adds the member to the access-control
        mirror; action ADD with role MEMBER and previous_role ADMIN is a
        demotion. Members without a contact are skipped.
        """
        action = Action(action)
        role = Role(role)
        contact_id = self.contact_id_for(member_id)
        if contact_id is None:
            logger.debug(f"Member {member_id} has no contact, skipping")
            return SyncResult(skipped=True)
        if pair is None:
            pair = self.pair_for(group_id, create=action is Action.ADD)
        if pair is None:
            logger.debug(f"Group {group_id} has no mirrors, skipping member {member_id}")
            return SyncResult(skipped=True)

        result = SyncResult()
        if action is Action.ADD:
            if is_active is None:
                is_active = self.community.member_is_active(member_id)
            status = MembershipStatus.ADDED if is_active else MembershipStatus.PENDING
            result.member_mirror_changed = self._apply(pair.member_group_id, contact_id, status)
            if role is Role.ADMIN:
                result.acl_mirror_changed = self._apply(pair.acl_group_id, contact_id, status)
            elif previous_role is Role.ADMIN:
                result.acl_mirror_changed = self._apply(pair.acl_group_id, contact_id, None)
        else:
            result.member_mirror_changed = self._apply(pair.member_group_id, contact_id, None)
            # Only writes when the member was still an admin
            result.acl_mirror_changed = self._apply(pair.acl_group_id, contact_id, None)
            result.removed = int(result.member_mirror_changed) + int(result.acl_mirror_changed)
        return result

    # Community side

    def community_add(self, group_id: int, member_id: int, is_admin: bool = False) -> bool:
        if self.community.is_member(group_id, member_id):
            return False
        self.community.member_add(group_id, member_id, is_admin=is_admin)
        logger.info(f"Added member {member_id} to Community group {group_id}")
        self._published(COMMUNITY, "member_add", group_id, member_id)
        return True

    def community_remove(self, group_id: int, member_id: int) -> bool:
        if not self.community.is_member(group_id, member_id):
            return False
        self.community.member_remove(group_id, member_id)
        logger.info(f"Removed member {member_id} from Community group {group_id}")
        self._published(COMMUNITY, "member_remove", group_id, member_id)
        return True

    def community_promote(self, group_id: int, member_id: int) -> bool:
        if self.community.is_admin(group_id, member_id):
            return False
        self.community.member_promote(group_id, member_id)
        logger.info(f"Promoted member {member_id} in Community group {group_id}")
        self._published(COMMUNITY, "member_promote", group_id, member_id)
        return True

    def community_demote(self, group_id: int, member_id: int) -> bool:
        if not self.community.is_admin(group_id, member_id):
            return False
        self.community.member_demote(group_id, member_id)
        logger.info(f"Demoted member {member_id} in Community group {group_id}")
        self._published(COMMUNITY, "member_demote", group_id, member_id)
        return True

    def community_set_role(self, group_id: int, member_id: int, role: Role) -> bool:
        if role is Role.ADMIN:
            return self.community_promote(group_id, member_id)
        return self.community_demote(group_id, member_id)

    def sync_contact(self, directory_group_id: int, contact_id: int, action: Action,
                     member_id: Optional[int] = None) -> SyncResult:
        """
        Mirror one change of a Directory mirror group back into Community.

        A contact added to an access-control mirror is first made a member
        of the membership mirror and of the Community group, then promoted.
        """
        action = Action(action)
        identity = self.pairs.identify(directory_group_id)
        if identity is None:
            logger.debug(f"Directory group {directory_group_id} is not a mirror, skipping")
            return SyncResult(skipped=True)
        group_id, kind = identity
        if not self.community.should_sync(group_id):
            return SyncResult(skipped=True)
        if not self._community_group_exists(group_id):
            logger.warning(
                f"Directory group {directory_group_id} mirrors missing Community group {group_id}"
            )
            return SyncResult(skipped=True)
        if member_id is None:
            member_id = self.member_id_for(contact_id)
        if member_id is None:
            logger.debug(f"Contact {contact_id} has no Community member, skipping")
            return SyncResult(skipped=True)

        result = SyncResult()
        if action is Action.ADD and kind is MirrorKind.MEMBER:
            result.member_mirror_changed = self.community_add(group_id, member_id)
        elif action is Action.ADD:
            pair = self.pairs.find_pair(group_id)
            if pair is not None and not self._is_active(pair.member_group_id, contact_id):
                self._apply(pair.member_group_id, contact_id, MembershipStatus.ADDED)
            result.member_mirror_changed = self.community_add(group_id, member_id)
            result.acl_mirror_changed = self.community_promote(group_id, member_id)
        elif kind is MirrorKind.MEMBER:
            result.member_mirror_changed = self.community_remove(group_id, member_id)
            pair = self.pairs.find_pair(group_id)
            if pair is not None:
                self._apply(pair.acl_group_id, contact_id, None)
        else:
            result.acl_mirror_changed = self.community_demote(group_id, member_id)
        return result

    def reconcile_group(self, group_id: int, direction: Direction) -> PageReport:
        """Converge the whole roster of one group in the given direction."""
        direction = Direction(direction)
        pair = self.pair_for(group_id, create=direction is Direction.TO_DIRECTORY)
        if pair is None:
            logger.warning(f"Group {group_id} has no mirrors, nothing to reconcile")
            return PageReport(skipped=1)

        community_roster = CommunityRosterAdapter(
            name="community", community=self.community, group_id=group_id, reconciler=self
        )
        directory_roster = DirectoryRosterAdapter(
            name="directory", directory=self.directory, pair=pair, reconciler=self
        )
        community_roster.load()
        directory_roster.load()

        if direction is Direction.TO_DIRECTORY:
            source, target = community_roster, directory_roster
        else:
            source, target = directory_roster, community_roster
        logger.info(f"Reconciling group {group_id} {direction.value}")
        target.sync_from(source)
        return target.execute_pending_operations()
