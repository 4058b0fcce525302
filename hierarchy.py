"""
Keeps the nesting of mirror groups in line with Community parents
"""

import logging
from typing import Optional, Set

from group_mirror import ContainerGroup, GroupPairMirror
from records import GroupPair, MirrorKind
from stores import CommunityStore, DirectoryStore


logger = logging.getLogger(__name__)


class HierarchyMirror:
    """
    Mirrors the single parent of a Community group onto both of its mirrors.

    The membership mirror is nested under the parent's membership mirror and
    the access-control mirror under the parent's access-control mirror.
    A group without a parent is nested under the container group when
    containerization is enabled, otherwise it gets no parent at all.
    """

    def __init__(self, directory: DirectoryStore, community: CommunityStore,
                 pairs: GroupPairMirror, container: Optional[ContainerGroup] = None,
                 use_container: bool = False):
        self.directory = directory
        self.community = community
        self.pairs = pairs
        self.container = container
        self.use_container = use_container and container is not None

    def ensure_group(self, community_group_id: int,
                     _seen: Optional[Set[int]] = None) -> Optional[GroupPair]:
        """
        Pair for a Community group, creating it if needed. A newly created
        pair is nested under its parent straight away.
        """
        group = self.community.group_get(community_group_id)
        if group is None:
            logger.warning(f"Community group {community_group_id} does not exist")
            return None
        pair, created = self.pairs.ensure_pair_created(group)
        if created:
            self.mirror_hierarchy(community_group_id, group.parent_id, _seen)
        return pair

    def _parent_pair(self, parent_id: int, seen: Set[int]) -> Optional[GroupPair]:
        if parent_id in seen:
            logger.error(f"Community group {parent_id} is its own ancestor")
            return None
        if not self.community.should_sync(parent_id):
            logger.debug(f"Parent group {parent_id} is not synced")
            return None
        return self.ensure_group(parent_id, seen)

    def mirror_hierarchy(self, community_group_id: int, new_parent_id: int,
                         _seen: Optional[Set[int]] = None) -> int:
        """
        Give both mirrors of a group exactly the parent edge matching
        new_parent_id. Returns the number of edges deleted plus created.
        """
        pair = self.pairs.find_pair(community_group_id)
        if pair is None:
            logger.warning(f"Group {community_group_id} has no mirrors, not nesting it")
            return 0

        seen = set(_seen or ()) | {community_group_id}
        parent_pair = None
        container_id = None
        if new_parent_id:
            parent_pair = self._parent_pair(new_parent_id, seen)
        if parent_pair is None and self.use_container:
            container_id = self.container.ensure()

        operations = 0
        for kind in (MirrorKind.MEMBER, MirrorKind.ACL):
            if parent_pair is not None:
                target = parent_pair.group_id_for(kind)
            else:
                target = container_id
            operations += self._reparent(pair.group_id_for(kind), target)
        return operations

    def _reparent(self, group_id: int, parent_id: Optional[int]) -> int:
        current = self.directory.hierarchy_get(group_id)
        wanted = [parent_id] if parent_id else []
        if current == wanted:
            logger.debug(f"Group {group_id} already has parents {wanted}")
            return 0

        operations = 0
        # Drop every edge, the Directory side allows more than one parent
        for old_parent in current:
            self.directory.hierarchy_delete(group_id, old_parent)
            operations += 1
        if parent_id:
            self.directory.hierarchy_create(group_id, parent_id)
            operations += 1
        logger.info(f"Nested group {group_id} under {parent_id or 'nothing'}")
        return operations
