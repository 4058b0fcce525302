"""
Wires the stores and sync components together
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from batch import BatchController
from cache import CorrespondenceCache
from config import Settings
from directions import DirectionPager, build_directions
from errors import CollaboratorError
from events import EventBus, EventRouter
from group_mirror import ContainerGroup, GroupPairMirror
from hierarchy import HierarchyMirror
from reconciler import MembershipReconciler
from records import Action, Direction, PageReport, Role, SourceTags, SyncResult
from state import StateStore
from stores import AclCollaborator, CommunityStore, DirectoryStore


logger = logging.getLogger(__name__)


@dataclass
class Run:
    """Components sharing one correspondence cache."""
    cache: CorrespondenceCache
    pairs: GroupPairMirror
    container: ContainerGroup
    hierarchy: HierarchyMirror
    reconciler: MembershipReconciler
    directions: Dict[Direction, DirectionPager]
    batch: BatchController


class SyncEngine:
    """
    Entry point for batch runs and single changes.

    Every public call builds a fresh Run, so no cached lookup outlives the
    call that made it.
    """

    def __init__(self, directory: DirectoryStore, community: CommunityStore,
                 acl: AclCollaborator, state: StateStore,
                 settings: Optional[Settings] = None, bus: Optional[EventBus] = None):
        self.directory = directory
        self.community = community
        self.acl = acl
        self.state = state
        self.settings = settings or Settings()
        self.tags = SourceTags(self.settings.source_prefix)
        self.bus = bus or EventBus()
        if self.settings.sync_groups is not None:
            self.community.sync_groups = self.settings.sync_groups

    def new_run(self) -> Run:
        cache = CorrespondenceCache()
        pairs = GroupPairMirror(self.directory, self.acl, self.state, cache, self.tags)
        container = ContainerGroup(self.directory, self.tags, cache)
        hierarchy = HierarchyMirror(
            self.directory, self.community, pairs, container, self.settings.use_container
        )
        reconciler = MembershipReconciler(
            self.directory, self.community, pairs, hierarchy, cache, self.bus.publish
        )
        directions = build_directions(self.directory, self.community, reconciler, self.tags)
        batch = BatchController(
            self.state, directions, self.settings.batch_count or 25, self.settings.lock_timeout
        )
        return Run(cache, pairs, container, hierarchy, reconciler, directions, batch)

    def router(self) -> EventRouter:
        return EventRouter(self, self.bus)

    # Batches

    def batch(self, identifier: str, direction: Optional[Direction] = None,
              page_size: Optional[int] = None) -> Dict:
        direction = Direction(direction or self.settings.direction)
        if page_size is None and self.settings.batch_count == 0:
            page_size = 0
        run = self.new_run()
        report = run.batch.run(identifier, direction, page_size)
        logger.debug(f"Correspondence cache: {run.cache.stats()}")
        return report

    def stop(self, identifier: str) -> bool:
        return self.new_run().batch.stop(identifier)

    def status(self, identifier: str) -> Dict:
        return self.new_run().batch.status(identifier)

    def sync_group(self, group_id: int, direction: Optional[Direction] = None) -> PageReport:
        """Converge one whole group, refreshing its mirrors first when Community leads."""
        direction = Direction(direction or self.settings.direction)
        run = self.new_run()
        if direction is Direction.TO_DIRECTORY:
            group = self.community.group_get(group_id)
            if group is None:
                logger.warning(f"Community group {group_id} does not exist")
                return PageReport(skipped=1)
            if run.pairs.update_pair(group) is None:
                run.hierarchy.ensure_group(group_id)
            else:
                run.hierarchy.mirror_hierarchy(group_id, group.parent_id)
        return run.reconciler.reconcile_group(group_id, direction)

    # Single changes

    def member_joined(self, group_id: int, member_id: int, is_admin: bool = False) -> SyncResult:
        role = Role.ADMIN if is_admin else Role.MEMBER
        return self.new_run().reconciler.sync_membership(group_id, member_id, Action.ADD, role)

    def member_left(self, group_id: int, member_id: int, was_admin: bool = False) -> SyncResult:
        role = Role.ADMIN if was_admin else Role.MEMBER
        return self.new_run().reconciler.sync_membership(group_id, member_id, Action.REMOVE, role)

    def member_role_changed(self, group_id: int, member_id: int, promoted: bool) -> SyncResult:
        reconciler = self.new_run().reconciler
        if promoted:
            return reconciler.sync_membership(group_id, member_id, Action.ADD, Role.ADMIN)
        return reconciler.sync_membership(
            group_id, member_id, Action.ADD, Role.MEMBER, previous_role=Role.ADMIN
        )

    def group_created(self, group_id: int):
        if not self.community.should_sync(group_id):
            return None
        return self.new_run().hierarchy.ensure_group(group_id)

    def group_updated(self, group_id: int):
        if not self.community.should_sync(group_id):
            return None
        run = self.new_run()
        group = self.community.group_get(group_id)
        if group is None:
            return None
        pair = run.pairs.update_pair(group)
        if pair is None:
            pair = run.hierarchy.ensure_group(group_id)
        return pair

    def group_deleted(self, group_id: int) -> bool:
        return self.new_run().pairs.delete_pair(group_id)

    def group_reparented(self, group_id: int, parent_id: int) -> int:
        return self.new_run().hierarchy.mirror_hierarchy(group_id, parent_id)

    def contacts_changed(self, directory_group_id: int, contact_ids: Iterable[int],
                         added: bool) -> PageReport:
        reconciler = self.new_run().reconciler
        action = Action.ADD if added else Action.REMOVE
        report = PageReport()
        for contact_id in contact_ids:
            report.processed += 1
            result = reconciler.sync_contact(directory_group_id, contact_id, action)
            if result.skipped:
                report.skipped += 1
            elif result.changed:
                report.changed += 1
        return report

    # Container group

    def container_enable(self) -> int:
        return self.new_run().container.assign_orphans()

    def container_disable(self) -> int:
        container = self.new_run().container
        released = container.release_all()
        container.delete()
        return released

    def check(self) -> Dict[str, Optional[str]]:
        """Ping every collaborator; maps a name to its error, None when reachable."""
        results: Dict[str, Optional[str]] = {}
        for name, store in (("community", self.community), ("directory", self.directory),
                            ("acl", self.acl)):
            try:
                store.ping()
                results[name] = None
            except CollaboratorError as e:
                logger.error(f"{name} check failed: {e}")
                results[name] = str(e)
        return results
