"""
Tests for mirroring group parents and the container group
"""

import pytest

from errors import AmbiguousMappingError


@pytest.fixture
def tree(community):
    """Groups 1 and 2 at the top, group 7 below group 1."""
    community.add_group(1, "Clubs")
    community.add_group(2, "Societies")
    community.add_group(7, "Chess Club", parent_id=1)
    return community


def _pair(engine, group_id):
    return engine.new_run().pairs.find_pair(group_id)


def test_new_group_is_nested_under_parent_mirrors(engine, directory, tree):
    child = engine.group_created(7)
    parent = _pair(engine, 1)

    assert directory.hierarchy_get(child.member_group_id) == [parent.member_group_id]
    assert directory.hierarchy_get(child.acl_group_id) == [parent.acl_group_id]
    assert directory.hierarchy_get(parent.member_group_id) == []


def test_reparent_replaces_one_edge_per_mirror(engine, directory, tree):
    child = engine.group_created(7)
    engine.group_created(2)
    deletes = directory.count("hierarchy_delete")
    creates = directory.count("hierarchy_create")
    tree.groups[7].parent_id = 2

    operations = engine.group_reparented(7, 2)

    new_parent = _pair(engine, 2)
    assert operations == 4
    assert directory.count("hierarchy_delete") - deletes == 2
    assert directory.count("hierarchy_create") - creates == 2
    assert directory.hierarchy_get(child.member_group_id) == [new_parent.member_group_id]
    assert directory.hierarchy_get(child.acl_group_id) == [new_parent.acl_group_id]


def test_reparent_creates_missing_parent_pair(engine, directory, tree):
    child = engine.group_created(7)

    engine.group_reparented(7, 2)

    new_parent = _pair(engine, 2)
    assert new_parent is not None
    assert directory.hierarchy_get(child.member_group_id) == [new_parent.member_group_id]


def test_reparent_to_same_parent_changes_nothing(engine, directory, tree):
    engine.group_created(7)

    assert engine.group_reparented(7, 1) == 0
    assert directory.count("hierarchy_delete") == 0


def test_reparent_to_top_level_drops_edges(engine, directory, tree):
    child = engine.group_created(7)

    assert engine.group_reparented(7, 0) == 2
    assert directory.hierarchy_get(child.member_group_id) == []
    assert directory.hierarchy_get(child.acl_group_id) == []


def test_extra_directory_parents_are_removed(engine, directory, tree):
    child = engine.group_created(7)
    other = directory.group_create("Hand made", "", "manual", None)
    directory.hierarchy_create(child.member_group_id, other.id)

    operations = engine.group_reparented(7, 1)

    assert operations == 3
    assert directory.hierarchy_get(child.member_group_id) == [_pair(engine, 1).member_group_id]


def test_unsynced_parent_is_not_mirrored(engine, directory, tree):
    tree.sync_groups = {7}

    child = engine.group_created(7)

    assert directory.hierarchy_get(child.member_group_id) == []
    assert _pair(engine, 1) is None


def test_parent_cycle_terminates(engine, directory, community):
    community.add_group(7, "Chess Club", parent_id=8)
    community.add_group(8, "Go Club", parent_id=7)

    child = engine.group_created(7)

    parent = _pair(engine, 8)
    assert directory.hierarchy_get(child.member_group_id) == [parent.member_group_id]
    assert directory.hierarchy_get(parent.member_group_id) == []


def test_unmirrored_group_is_not_reparented(engine, directory, tree):
    assert engine.group_reparented(7, 2) == 0
    assert directory.groups == {}


def test_container_nests_parentless_mirrors(engine, directory, tree):
    child = engine.group_created(7)
    top = _pair(engine, 1)

    assert engine.container_enable() == 2

    container_id = next(g.id for g in directory.groups.values() if g.title == "Community Groups")
    assert directory.groups[container_id].kind is None
    assert directory.hierarchy_get(top.member_group_id) == [container_id]
    assert directory.hierarchy_get(top.acl_group_id) == [container_id]
    assert directory.hierarchy_get(child.member_group_id) == [top.member_group_id]
    # Nothing left to nest the second time
    assert engine.container_enable() == 0


def test_container_disable_releases_and_deletes(engine, directory, tree):
    top = engine.group_created(1)
    engine.container_enable()

    assert engine.container_disable() == 2

    assert directory.hierarchy_get(top.member_group_id) == []
    assert all(g.title != "Community Groups" for g in directory.groups.values())
    assert engine.container_disable() == 0


def test_new_top_level_group_goes_into_container(engine, directory, tree):
    engine.settings.use_container = True

    top = engine.group_created(2)

    container_id = next(g.id for g in directory.groups.values() if g.title == "Community Groups")
    assert directory.hierarchy_get(top.member_group_id) == [container_id]
    assert directory.hierarchy_get(top.acl_group_id) == [container_id]
    assert directory.count("group_create") == 3


def test_duplicate_container_is_ambiguous(engine, directory, tree):
    for _ in range(2):
        directory.group_create("Community Groups", "", "Community Sync Group Container", None)

    with pytest.raises(AmbiguousMappingError):
        engine.container_enable()
