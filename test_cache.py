"""
Tests for the per-run correspondence cache
"""

from cache import CONTACT, GROUP_PAIR, MISS, NOT_FOUND, CorrespondenceCache


def test_lookup_miss_then_hit():
    cache = CorrespondenceCache()

    assert cache.lookup(CONTACT, 42) is MISS
    cache.store(CONTACT, 42, 900)

    assert cache.lookup(CONTACT, 42) == 900
    assert cache.stats() == {"entries": 1, "hits": 1, "misses": 1}


def test_none_is_remembered_as_not_found():
    cache = CorrespondenceCache()
    calls = []

    def load():
        calls.append(1)
        return None

    assert cache.get_or_load(CONTACT, 77, load) is None
    assert cache.get_or_load(CONTACT, 77, load) is None
    assert cache.lookup(CONTACT, 77) is NOT_FOUND
    assert len(calls) == 1


def test_sentinels_are_falsy():
    assert not MISS
    assert not NOT_FOUND
    assert repr(NOT_FOUND) == "NOT_FOUND"


def test_kinds_do_not_collide():
    cache = CorrespondenceCache()
    cache.store(CONTACT, 7, 900)
    cache.store(GROUP_PAIR, 7, "pair")

    assert cache.get_or_load(CONTACT, 7, lambda: None) == 900
    assert cache.get_or_load(GROUP_PAIR, 7, lambda: None) == "pair"


def test_false_values_are_cached():
    cache = CorrespondenceCache()
    calls = []

    def load():
        calls.append(1)
        return False

    assert cache.get_or_load("exists", 7, load) is False
    assert cache.get_or_load("exists", 7, load) is False
    assert len(calls) == 1


def test_forget_drops_entry():
    cache = CorrespondenceCache()
    cache.store(GROUP_PAIR, 7, "pair")

    cache.forget(GROUP_PAIR, 7)
    cache.forget(GROUP_PAIR, 8)

    assert len(cache) == 0
    assert cache.lookup(GROUP_PAIR, 7) is MISS


def test_each_engine_call_starts_cold(engine, directory, community):
    community.add_group(7, "Chess Club")
    community.members[7] = {42: False}
    directory.add_contact(42, 900)

    engine.member_joined(7, 42)
    engine.member_joined(7, 42)

    assert directory.count("contact_id_by_member_id") == 2


def test_lookups_are_shared_within_a_run(engine, directory, community):
    community.add_group(7, "Chess Club")
    community.add_group(8, "Go Club")
    community.members[7] = {42: False}
    community.members[8] = {42: False}
    directory.add_contact(42, 900)

    report = engine.batch("cron", page_size=0)

    assert report["changed"] == 2
    assert directory.count("contact_id_by_member_id") == 1
