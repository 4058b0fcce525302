"""
Directory-side mirrors of Community groups.

Every Community group is mirrored by a pair of Directory groups: a
membership mirror holding all members and an access-control mirror holding
the admins, linked through the ACL collaborator. The pair is found through
the explicit mapping table, falling back to the "source" tag on each mirror.
"""

import logging
from typing import List, Optional, Set, Tuple

from cache import GROUP_PAIR, CorrespondenceCache
from errors import (
    AclError,
    AclLinkError,
    AmbiguousMappingError,
    CollaboratorError,
    PartialMirrorError,
)
from records import (
    CommunityGroup,
    DirectoryGroup,
    GroupPair,
    MirrorKind,
    SourceTags,
    acl_title,
)
from state import StateStore
from stores import AclCollaborator, DirectoryStore


logger = logging.getLogger(__name__)

DIRECTORY_GROUP = "directory_group"
CONTAINER = "container"


class GroupPairMirror:
    """Finds, creates, updates and deletes the mirror pair of a Community group."""

    def __init__(self, directory: DirectoryStore, acl: AclCollaborator,
                 state: Optional[StateStore] = None,
                 cache: Optional[CorrespondenceCache] = None,
                 tags: Optional[SourceTags] = None):
        self.directory = directory
        self.acl = acl
        self.state = state
        self.cache = cache if cache is not None else CorrespondenceCache()
        self.tags = tags or SourceTags()
        # Pairs found by tag whose linkage is missing
        self._unlinked: Set[int] = set()

    def _find_by_source(self, source: str) -> Optional[DirectoryGroup]:
        groups = self.directory.group_get_by_source(source)
        if len(groups) > 1:
            ids = [g.id for g in groups]
            logger.error(f"Source tag '{source}' matches {len(groups)} groups: {ids}")
            raise AmbiguousMappingError(
                f"Source tag '{source}' matches more than one group", source, ids
            )
        return groups[0] if groups else None

    def _find_halves(self, community_group_id: int
                     ) -> Tuple[Optional[DirectoryGroup], Optional[DirectoryGroup], bool]:
        """
        Both mirror groups, each None when missing, and whether they came
        from the mapping table. A mapping row is only written for a linked pair.
        """
        if self.state is not None:
            mapping = self.state.mapping_get(community_group_id)
            if mapping is not None:
                member = self.directory.group_get_by_id(mapping[0])
                acl = self.directory.group_get_by_id(mapping[1])
                if member is not None and acl is not None:
                    return member, acl, True
                # The tag lookup below repairs a stale mapping
                logger.warning(
                    f"Mapping for group {community_group_id} points at missing "
                    f"Directory groups {mapping}, falling back to source tags"
                )
                self.state.mapping_delete(community_group_id)

        member = self._find_by_source(self.tags.member(community_group_id))
        acl = self._find_by_source(self.tags.acl(community_group_id))
        return member, acl, False

    def _mapped(self, pair: GroupPair) -> None:
        self._unlinked.discard(pair.community_group_id)
        if self.state is not None:
            self.state.mapping_put(pair.community_group_id, pair.member_group_id, pair.acl_group_id)

    def _link(self, pair: GroupPair) -> None:
        try:
            self.acl.link(pair.acl_group_id, pair.member_group_id)
        except AclError as e:
            logger.error(
                f"Could not link access-control mirror {pair.acl_group_id} to membership "
                f"mirror {pair.member_group_id} of group {pair.community_group_id}, "
                f"manual cleanup required: {e}"
            )
            raise AclLinkError(
                f"ACL linkage failed for group {pair.community_group_id}: {e}",
                pair.community_group_id,
            ) from e
        self._mapped(pair)

    def _remember(self, pair: GroupPair) -> None:
        self.cache.store(GROUP_PAIR, pair.community_group_id, pair)
        self.cache.store(DIRECTORY_GROUP, pair.member_group_id,
                         (pair.community_group_id, MirrorKind.MEMBER))
        self.cache.store(DIRECTORY_GROUP, pair.acl_group_id,
                         (pair.community_group_id, MirrorKind.ACL))

    def find_pair(self, community_group_id: int) -> Optional[GroupPair]:
        """
        The complete pair for a Community group, or None. A pair found by tag
        is written to the mapping table only when it is already linked.
        """

        def load():
            member, acl, mapped = self._find_halves(community_group_id)
            if member is None or acl is None:
                return None
            pair = GroupPair(community_group_id, member.id, acl.id)
            if not mapped:
                if self.acl.is_linked(acl.id, member.id):
                    self._mapped(pair)
                else:
                    logger.warning(
                        f"Mirrors {member.id} and {acl.id} of group {community_group_id} "
                        f"are not linked"
                    )
                    self._unlinked.add(community_group_id)
            self._remember(pair)
            return pair

        return self.cache.get_or_load(GROUP_PAIR, community_group_id, load)

    def identify(self, directory_group_id: int) -> Optional[Tuple[int, MirrorKind]]:
        """(Community group id, mirror kind) of a Directory group, or None if it is no mirror."""

        def load():
            if self.state is not None:
                community_group_id = self.state.mapping_by_directory_group(directory_group_id)
                if community_group_id is not None:
                    member_group_id, _ = self.state.mapping_get(community_group_id)
                    kind = MirrorKind.MEMBER if member_group_id == directory_group_id else MirrorKind.ACL
                    return community_group_id, kind
            group = self.directory.group_get_by_id(directory_group_id)
            if group is None:
                return None
            return self.tags.parse(group.source)

        return self.cache.get_or_load(DIRECTORY_GROUP, directory_group_id, load)

    def ensure_pair(self, group: CommunityGroup) -> GroupPair:
        return self.ensure_pair_created(group)[0]

    def ensure_pair_created(self, group: CommunityGroup) -> Tuple[GroupPair, bool]:
        """
        Return the pair for a Community group, creating whatever is missing.
        The second value tells whether anything was created.

        An existing pair has its field values refreshed and is linked when it
        was only found by tag. A half created here is deleted again when the
        other half cannot be created.
        """
        cached = self.cache.lookup(GROUP_PAIR, group.id)
        if cached and group.id not in self._unlinked:
            return cached, False

        member, acl, mapped = self._find_halves(group.id)
        if member is not None and acl is not None:
            self._push_fields(group, member, acl)
            pair = GroupPair(group.id, member.id, acl.id)
            if not mapped:
                self._link(pair)
            self._remember(pair)
            return pair, False

        created_member = None
        if member is None:
            member = self.directory.group_create(
                title=group.name,
                description=group.description,
                source=self.tags.member(group.id),
                kind=MirrorKind.MEMBER,
                is_active=group.is_active,
            )
            created_member = member
            logger.info(f"Created membership mirror {member.id} for group {group.id}")

        if acl is None:
            try:
                acl = self.directory.group_create(
                    title=acl_title(group.name),
                    description=group.description,
                    source=self.tags.acl(group.id),
                    kind=MirrorKind.ACL,
                    is_active=group.is_active,
                )
            except CollaboratorError as e:
                self._compensate(group.id, created_member, e)
                raise PartialMirrorError(
                    f"Could not create access-control mirror for group {group.id}: {e}",
                    group.id,
                ) from e
            logger.info(f"Created access-control mirror {acl.id} for group {group.id}")

        pair = GroupPair(group.id, member.id, acl.id)
        self._link(pair)
        self._remember(pair)
        return pair, True

    def _compensate(self, community_group_id: int, created: Optional[DirectoryGroup],
                    cause: Exception) -> None:
        if created is None:
            return
        try:
            self.directory.group_delete(created.id)
            logger.warning(
                f"Deleted membership mirror {created.id} of group {community_group_id} "
                f"after access-control mirror creation failed"
            )
        except CollaboratorError as e:
            logger.error(
                f"Orphaned membership mirror {created.id} of group {community_group_id}, "
                f"manual cleanup required: {e}"
            )
            raise PartialMirrorError(
                f"Could not create access-control mirror for group {community_group_id} "
                f"and could not delete membership mirror {created.id}: {cause}",
                community_group_id,
                orphan_id=created.id,
            ) from e

    def _push_fields(self, group: CommunityGroup, member: DirectoryGroup,
                     acl: DirectoryGroup) -> bool:
        changed = False
        for mirror, title in ((member, group.name), (acl, acl_title(group.name))):
            if (mirror.title, mirror.description, mirror.is_active) == \
                    (title, group.description, group.is_active):
                continue
            self.directory.group_update(
                mirror.id,
                title=title,
                description=group.description,
                is_active=group.is_active,
            )
            logger.info(f"Updated mirror {mirror.id} of group {group.id}")
            changed = True
        return changed

    def update_pair(self, group: CommunityGroup) -> Optional[GroupPair]:
        """Push title, description and active flag to an existing pair."""
        member, acl, _ = self._find_halves(group.id)
        if member is None or acl is None:
            return None
        self._push_fields(group, member, acl)
        pair = GroupPair(group.id, member.id, acl.id)
        self._remember(pair)
        return pair

    def delete_pair(self, community_group_id: int) -> bool:
        """Unlink and delete both mirrors of a Community group."""
        member, acl, _ = self._find_halves(community_group_id)
        if member is None and acl is None:
            logger.debug(f"Group {community_group_id} has no mirrors to delete")
            return False
        if member is not None and acl is not None:
            self.acl.unlink(acl.id, member.id)
        for mirror in (acl, member):
            if mirror is not None:
                self.directory.group_delete(mirror.id)
                self.cache.forget(DIRECTORY_GROUP, mirror.id)
                logger.info(f"Deleted mirror {mirror.id} of group {community_group_id}")
        if self.state is not None:
            self.state.mapping_delete(community_group_id)
        self.cache.forget(GROUP_PAIR, community_group_id)
        self._unlinked.discard(community_group_id)
        return True


class ContainerGroup:
    """
    Top-level Directory group that parentless mirrors are nested under when
    containerization is enabled.
    """

    TITLE = "Community Groups"
    DESCRIPTION = "Container for all Community Groups."

    def __init__(self, directory: DirectoryStore, tags: Optional[SourceTags] = None,
                 cache: Optional[CorrespondenceCache] = None):
        self.directory = directory
        self.tags = tags or SourceTags()
        self.cache = cache if cache is not None else CorrespondenceCache()

    def find(self) -> Optional[int]:
        source = self.tags.container()
        groups = self.directory.group_get_by_source(source)
        if len(groups) > 1:
            ids = [g.id for g in groups]
            logger.error(f"Container source tag '{source}' matches groups {ids}")
            raise AmbiguousMappingError(
                f"Source tag '{source}' matches more than one group", source, ids
            )
        return groups[0].id if groups else None

    def ensure(self) -> int:
        cached = self.cache.lookup(CONTAINER, self.tags.container())
        if cached:
            return cached
        group_id = self.find()
        if group_id is None:
            group = self.directory.group_create(
                title=self.TITLE,
                description=self.DESCRIPTION,
                source=self.tags.container(),
                kind=None,
            )
            group_id = group.id
            logger.info(f"Created container group {group_id}")
        self.cache.store(CONTAINER, self.tags.container(), group_id)
        return group_id

    def _mirrors(self) -> List[DirectoryGroup]:
        return [
            group for group in self.directory.groups_get_by_source_prefix(self.tags.prefix)
            if self.tags.is_synced(group.source)
        ]

    def assign_orphans(self) -> int:
        """Nest every parentless mirror under the container. Returns the edges created."""
        container_id = self.ensure()
        created = 0
        for group in self._mirrors():
            if group.parents:
                continue
            self.directory.hierarchy_create(group.id, container_id)
            created += 1
        logger.info(f"Nested {created} mirror groups under container {container_id}")
        return created

    def release_all(self) -> int:
        """Remove every nesting under the container. Returns the edges deleted."""
        container_id = self.find()
        if container_id is None:
            return 0
        deleted = 0
        for group in self._mirrors():
            if container_id in group.parents:
                self.directory.hierarchy_delete(group.id, container_id)
                deleted += 1
        logger.info(f"Released {deleted} mirror groups from container {container_id}")
        return deleted

    def delete(self) -> bool:
        container_id = self.find()
        if container_id is None:
            return False
        self.directory.group_delete(container_id)
        self.cache.forget(CONTAINER, self.tags.container())
        logger.info(f"Deleted container group {container_id}")
        return True
