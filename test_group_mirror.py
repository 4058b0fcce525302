"""
Tests for creating, finding and deleting mirror pairs
"""

import pytest

from errors import AclLinkError, AmbiguousMappingError, PartialMirrorError
from group_mirror import GroupPairMirror
from records import CommunityGroup, MirrorKind, SourceTags, acl_title


@pytest.fixture
def group():
    return CommunityGroup(id=7, name="Chess Club", description="Plays chess")


@pytest.fixture
def pairs(directory, acl, state):
    return GroupPairMirror(directory, acl, state)


def test_ensure_pair_creates_both_mirrors(pairs, directory, acl, state, group):
    pair, created = pairs.ensure_pair_created(group)

    assert created is True
    member = directory.groups[pair.member_group_id]
    admins = directory.groups[pair.acl_group_id]
    assert member.title == "Chess Club"
    assert member.source == "Community Sync Group :7:"
    assert member.kind is MirrorKind.MEMBER
    assert admins.title == "Chess Club: Administrator"
    assert admins.source == "Community Sync Group ACL :7:"
    assert admins.kind is MirrorKind.ACL
    assert acl.links == {(pair.acl_group_id, pair.member_group_id)}
    assert state.mapping_get(7) == (pair.member_group_id, pair.acl_group_id)


def test_ensure_pair_is_idempotent(pairs, directory, acl, group):
    first = pairs.ensure_pair(group)

    fresh = GroupPairMirror(directory, acl, pairs.state)
    second, created = fresh.ensure_pair_created(group)

    assert second == first
    assert created is False
    assert directory.count("group_create") == 2
    assert acl.count("link") == 1


def test_ensure_pair_pushes_changed_fields(pairs, directory, acl, group):
    pair = pairs.ensure_pair(group)
    group.name = "Go Club"
    group.is_active = False

    GroupPairMirror(directory, acl, pairs.state).ensure_pair(group)

    assert directory.groups[pair.member_group_id].title == "Go Club"
    assert directory.groups[pair.acl_group_id].title == "Go Club: Administrator"
    assert directory.groups[pair.acl_group_id].is_active is False


def test_cached_pair_skips_lookups(pairs, directory, group):
    pair = pairs.ensure_pair(group)
    directory.fail_on.update({"group_get_by_source", "group_get_by_id"})

    assert pairs.ensure_pair(group) == pair
    assert pairs.find_pair(7) == pair
    assert pairs.cache.hits >= 2


def test_failed_acl_mirror_deletes_new_member_mirror(pairs, directory, state, group):
    directory.fail_on.add("group_create:acl")

    with pytest.raises(PartialMirrorError) as excinfo:
        pairs.ensure_pair(group)

    assert excinfo.value.community_group_id == 7
    assert excinfo.value.orphan_id is None
    assert directory.groups == {}
    assert state.mapping_get(7) is None


def test_failed_compensation_reports_orphan(pairs, directory, group):
    directory.fail_on.update({"group_create:acl", "group_delete"})

    with pytest.raises(PartialMirrorError) as excinfo:
        pairs.ensure_pair(group)

    assert excinfo.value.orphan_id is not None
    assert excinfo.value.orphan_id in directory.groups


def test_existing_member_mirror_is_not_compensated(pairs, directory, group):
    existing = directory.group_create("Chess Club", "", SourceTags().member(7), MirrorKind.MEMBER)
    directory.fail_on.add("group_create:acl")

    with pytest.raises(PartialMirrorError):
        pairs.ensure_pair(group)

    assert existing.id in directory.groups
    assert directory.count("group_delete") == 0


def test_missing_acl_mirror_is_completed(pairs, directory, acl, group):
    existing = directory.group_create("Chess Club", "", SourceTags().member(7), MirrorKind.MEMBER)

    pair, created = pairs.ensure_pair_created(group)

    assert created is True
    assert pair.member_group_id == existing.id
    assert directory.count("group_create") == 2
    assert (pair.acl_group_id, existing.id) in acl.links


def test_failed_link_keeps_both_mirrors(pairs, directory, acl, state, group):
    acl.fail_on.add("link")

    with pytest.raises(AclLinkError) as excinfo:
        pairs.ensure_pair(group)

    assert excinfo.value.community_group_id == 7
    assert len(directory.groups) == 2
    assert directory.count("group_delete") == 0
    assert state.mapping_get(7) is None


def test_unlinked_pair_is_linked_on_next_ensure(pairs, directory, acl, state, group):
    acl.fail_on.add("link")
    with pytest.raises(AclLinkError):
        pairs.ensure_pair(group)
    acl.fail_on.clear()

    pair, created = GroupPairMirror(directory, acl, state).ensure_pair_created(group)

    assert created is False
    assert directory.count("group_create") == 2
    assert acl.links == {(pair.acl_group_id, pair.member_group_id)}
    assert state.mapping_get(7) == (pair.member_group_id, pair.acl_group_id)


def test_unlinked_pair_stays_unmapped_until_linked(pairs, directory, acl, state, group):
    acl.fail_on.add("link")
    with pytest.raises(AclLinkError):
        pairs.ensure_pair(group)

    fresh = GroupPairMirror(directory, acl, state)
    pair = fresh.find_pair(7)
    assert pair is not None
    assert state.mapping_get(7) is None

    # Still failing: the cached pair is not handed out as healthy
    with pytest.raises(AclLinkError):
        fresh.ensure_pair(group)

    acl.fail_on.clear()
    assert fresh.ensure_pair(group) == pair
    assert acl.links == {(pair.acl_group_id, pair.member_group_id)}
    assert state.mapping_get(7) == (pair.member_group_id, pair.acl_group_id)


def test_duplicate_source_tag_is_ambiguous(pairs, directory, group):
    source = SourceTags().member(7)
    first = directory.group_create("Chess Club", "", source, MirrorKind.MEMBER)
    second = directory.group_create("Chess Club (copy)", "", source, MirrorKind.MEMBER)

    with pytest.raises(AmbiguousMappingError) as excinfo:
        pairs.find_pair(7)

    assert excinfo.value.source == source
    assert excinfo.value.group_ids == (first.id, second.id)


def test_acl_title_suffix_applied_once(pairs, directory):
    group = CommunityGroup(id=8, name="Board: Administrator")

    pair = pairs.ensure_pair(group)

    assert directory.groups[pair.acl_group_id].title == "Board: Administrator"
    assert acl_title("Board: Administrator: Administrator") == "Board: Administrator"


def test_mapping_table_is_preferred_over_tags(pairs, directory, acl, group):
    pair = pairs.ensure_pair(group)
    directory.groups[pair.member_group_id].source = "renamed by hand"

    found = GroupPairMirror(directory, acl, pairs.state).find_pair(7)

    assert found == pair


def test_stale_mapping_falls_back_to_tags(pairs, directory, acl, state, group):
    pair = pairs.ensure_pair(group)
    state.mapping_put(7, 555, 556)

    found = GroupPairMirror(directory, acl, state).find_pair(7)

    assert found == pair
    assert state.mapping_get(7) == (pair.member_group_id, pair.acl_group_id)


def test_tags_alone_find_pair_without_state(directory, acl, group):
    pair = GroupPairMirror(directory, acl).ensure_pair(group)

    fresh = GroupPairMirror(directory, acl)

    assert fresh.find_pair(7) == pair
    assert fresh.identify(pair.member_group_id) == (7, MirrorKind.MEMBER)
    assert fresh.identify(pair.acl_group_id) == (7, MirrorKind.ACL)
    assert fresh.find_pair(8) is None


def test_identify_uses_mapping(pairs, directory, acl, group):
    pair = pairs.ensure_pair(group)
    fresh = GroupPairMirror(directory, acl, pairs.state)
    directory.fail_on.add("group_get_by_id")

    assert fresh.identify(pair.acl_group_id) == (7, MirrorKind.ACL)


def test_update_pair_without_mirrors_returns_none(pairs, directory, group):
    assert pairs.update_pair(group) is None
    assert directory.groups == {}


def test_delete_pair_removes_everything(pairs, directory, acl, state, group):
    pair = pairs.ensure_pair(group)

    assert pairs.delete_pair(7) is True

    assert directory.groups == {}
    assert acl.links == set()
    assert state.mapping_get(7) is None
    assert pairs.find_pair(7) is None
    assert pairs.delete_pair(7) is False
    assert acl.count("unlink") == 1
    assert pair.acl_group_id not in directory.groups
