"""
Shared fixtures: in-memory stores wired into a sync engine
"""

import pytest

from config import Settings
from engine import SyncEngine
from memory_stores import InMemoryAcl, InMemoryCommunityStore, InMemoryDirectoryStore
from state import StateStore


@pytest.fixture
def directory():
    return InMemoryDirectoryStore()


@pytest.fixture
def community():
    return InMemoryCommunityStore()


@pytest.fixture
def acl():
    return InMemoryAcl()


@pytest.fixture
def state():
    store = StateStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def settings():
    return Settings(state_db=":memory:", batch_count=2)


@pytest.fixture
def engine(directory, community, acl, state, settings):
    return SyncEngine(directory, community, acl, state, settings)


@pytest.fixture
def populated(directory, community):
    """
    Community group 7 "Chess Club" with member 42 (admin) and member 43.
    Member 42 is contact 900, member 43 is contact 901.
    """
    community.add_group(7, "Chess Club", "Plays chess")
    community.members[7] = {42: True, 43: False}
    directory.add_contact(42, 900)
    directory.add_contact(43, 901)
    return community, directory
