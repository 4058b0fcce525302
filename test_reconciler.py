"""
Tests for membership reconciliation in both directions
"""

import pytest

from errors import DirectoryError
from records import Action, Direction, MembershipStatus, Role


@pytest.fixture
def club(engine, directory, community):
    """Group 7 with two regular members and one admin, mirrors not created yet."""
    community.add_group(7, "Chess Club", "Plays chess")
    community.members[7] = {41: False, 42: True, 43: False}
    for member_id in (41, 42, 43):
        directory.add_contact(member_id, member_id + 858)
    return community.groups[7]


def test_initial_sync_creates_pair_and_memberships(engine, directory, community, acl, club):
    run = engine.new_run()
    pair = run.pairs.ensure_pair(club)

    for membership in community.group_members(7):
        run.reconciler.sync_membership(7, membership.member_id, Action.ADD, membership.role)

    assert directory.active_contacts(pair.member_group_id) == {899, 900, 901}
    assert directory.active_contacts(pair.acl_group_id) == {900}
    assert (pair.acl_group_id, pair.member_group_id) in acl.links


def test_demoted_admin_leaves_access_control_mirror(engine, directory, club):
    engine.member_joined(7, 42, is_admin=True)
    pair = engine.new_run().pairs.find_pair(7)
    writes_before = directory.count("membership_create")

    result = engine.member_role_changed(7, 42, promoted=False)

    assert result.acl_mirror_changed is True
    assert result.member_mirror_changed is False
    assert directory.memberships[(pair.acl_group_id, 900)] == MembershipStatus.REMOVED
    assert directory.memberships[(pair.member_group_id, 900)] == MembershipStatus.ADDED
    assert directory.count("membership_create") == writes_before


def test_promoted_member_joins_access_control_mirror(engine, directory, club):
    engine.member_joined(7, 41)
    pair = engine.new_run().pairs.find_pair(7)
    assert 899 not in directory.active_contacts(pair.acl_group_id)

    result = engine.member_role_changed(7, 41, promoted=True)

    assert result.acl_mirror_changed is True
    assert 899 in directory.active_contacts(pair.acl_group_id)


def test_no_changes_when_already_in_sync(engine, directory, club):
    first = engine.member_joined(7, 42, is_admin=True)
    writes = directory.count("membership_create") + directory.count("group_create")

    second = engine.member_joined(7, 42, is_admin=True)

    assert first.changed
    assert second.noop
    assert directory.count("membership_create") + directory.count("group_create") == writes


def test_member_left_soft_deletes_both_records(engine, directory, club):
    engine.member_joined(7, 42, is_admin=True)
    pair = engine.new_run().pairs.find_pair(7)

    result = engine.member_left(7, 42, was_admin=True)

    assert result.removed == 2
    assert directory.memberships[(pair.member_group_id, 900)] == MembershipStatus.REMOVED
    assert directory.memberships[(pair.acl_group_id, 900)] == MembershipStatus.REMOVED


def test_member_left_for_unmirrored_group_creates_nothing(engine, directory, club):
    result = engine.member_left(7, 41)

    assert result.skipped
    assert directory.groups == {}


def test_removed_member_can_rejoin(engine, directory, club):
    engine.member_joined(7, 41)
    engine.member_left(7, 41)
    pair = engine.new_run().pairs.find_pair(7)

    result = engine.member_joined(7, 41)

    assert result.member_mirror_changed
    assert directory.memberships[(pair.member_group_id, 899)] == MembershipStatus.ADDED


def test_inactive_member_is_mirrored_as_pending(engine, directory, community, club):
    community.inactive.add(43)

    engine.member_joined(7, 43)

    pair = engine.new_run().pairs.find_pair(7)
    assert directory.memberships[(pair.member_group_id, 901)] == MembershipStatus.PENDING


def test_removed_inactive_member_stays_removed_until_active(engine, directory, community, club):
    engine.member_joined(7, 41)
    engine.member_left(7, 41)
    pair = engine.new_run().pairs.find_pair(7)
    community.inactive.add(41)

    result = engine.member_joined(7, 41)

    assert not result.member_mirror_changed
    assert directory.memberships[(pair.member_group_id, 899)] == MembershipStatus.REMOVED

    community.inactive.discard(41)
    engine.member_joined(7, 41)

    assert directory.memberships[(pair.member_group_id, 899)] == MembershipStatus.ADDED


def test_member_without_contact_is_skipped(engine, directory, community, club):
    community.members[7][77] = False

    result = engine.member_joined(7, 77)

    assert result.skipped
    assert directory.count("membership_create") == 0


def test_failed_member_write_leaves_admin_mirror_untouched(engine, directory, club):
    pair = engine.group_created(7)
    directory.fail_on.add(f"membership_create:{pair.member_group_id}")

    with pytest.raises(DirectoryError):
        engine.member_joined(7, 42, is_admin=True)

    assert directory.active_contacts(pair.acl_group_id) == set()


def test_admins_stay_a_subset_of_members(engine, directory, community, club):
    run = engine.new_run()
    for membership in community.group_members(7):
        run.reconciler.sync_membership(7, membership.member_id, Action.ADD, membership.role)
    engine.member_left(7, 41)
    engine.member_role_changed(7, 43, promoted=True)
    engine.member_left(7, 42, was_admin=True)

    pair = engine.new_run().pairs.find_pair(7)
    admins = directory.active_contacts(pair.acl_group_id)
    members = directory.active_contacts(pair.member_group_id)
    assert admins <= members
    assert admins == {901}


def test_contact_added_to_member_mirror_joins_community(engine, directory, community, club):
    pair = engine.group_created(7)
    directory.add_contact(50, 950)

    report = engine.contacts_changed(pair.member_group_id, [950], added=True)

    assert report.changed == 1
    assert community.members[7][50] is False


def test_contact_added_to_acl_mirror_heals_member_mirror(engine, directory, community, club):
    pair = engine.group_created(7)
    directory.add_contact(50, 950)
    directory.memberships[(pair.acl_group_id, 950)] = MembershipStatus.ADDED

    engine.contacts_changed(pair.acl_group_id, [950], added=True)

    assert directory.memberships[(pair.member_group_id, 950)] == MembershipStatus.ADDED
    assert community.members[7][50] is True


def test_contact_removed_from_member_mirror_leaves_community(engine, directory, community, club):
    engine.member_joined(7, 42, is_admin=True)
    pair = engine.new_run().pairs.find_pair(7)
    directory.memberships[(pair.member_group_id, 900)] = MembershipStatus.REMOVED

    engine.contacts_changed(pair.member_group_id, [900], added=False)

    assert 42 not in community.members[7]
    assert directory.memberships[(pair.acl_group_id, 900)] == MembershipStatus.REMOVED


def test_contact_removed_from_acl_mirror_is_demoted(engine, directory, community, club):
    pair = engine.group_created(7)

    engine.contacts_changed(pair.acl_group_id, [900], added=False)

    assert community.members[7][42] is False


def test_contact_in_foreign_group_is_ignored(engine, directory, community, club):
    foreign = directory.group_create("Newsletter", "", "manual", None)

    report = engine.contacts_changed(foreign.id, [900], added=True)

    assert report.skipped == 1
    assert community.count("member_add") == 0


def test_contact_of_unsynced_group_is_ignored(engine, directory, community, club):
    pair = engine.group_created(7)
    community.sync_groups = {8}

    report = engine.contacts_changed(pair.member_group_id, [899], added=True)

    assert report.skipped == 1


def test_reconcile_group_to_directory(engine, directory, club):
    pair = engine.group_created(7)
    directory.add_contact(44, 902)
    directory.memberships[(pair.member_group_id, 902)] = MembershipStatus.ADDED
    directory.memberships[(pair.acl_group_id, 899)] = MembershipStatus.ADDED

    report = engine.sync_group(7, Direction.TO_DIRECTORY)

    assert report.failed == 0
    assert directory.active_contacts(pair.member_group_id) == {899, 900, 901}
    assert directory.active_contacts(pair.acl_group_id) == {900}


def test_reconcile_group_to_community(engine, directory, community, club):
    pair = engine.group_created(7)
    directory.add_contact(44, 902)
    for contact_id in (899, 902):
        directory.memberships[(pair.member_group_id, contact_id)] = MembershipStatus.ADDED
    directory.memberships[(pair.acl_group_id, 902)] = MembershipStatus.ADDED

    report = engine.sync_group(7, Direction.TO_COMMUNITY)

    assert report.failed == 0
    assert community.members[7] == {41: False, 44: True}


def test_reconcile_unmirrored_group_to_community_is_skipped(engine, directory, club):
    report = engine.sync_group(7, Direction.TO_COMMUNITY)

    assert report.skipped == 1
    assert directory.groups == {}


def test_sync_membership_accepts_string_values(engine, directory, club):
    reconciler = engine.new_run().reconciler

    result = reconciler.sync_membership(7, 42, "add", "admin")

    assert result.member_mirror_changed and result.acl_mirror_changed
    assert reconciler.sync_membership(7, 42, Action.ADD, Role.ADMIN).noop
