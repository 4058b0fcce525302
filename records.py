"""
Record types shared by the Community and Directory sides of the sync
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


DEFAULT_SOURCE_PREFIX = "Community Sync Group"
ACL_TITLE_SUFFIX = ": Administrator"


class Role(str, Enum):
    """A member's role within a Community group."""
    MEMBER = "member"
    ADMIN = "admin"


class Action(str, Enum):
    ADD = "add"
    REMOVE = "remove"


class Direction(str, Enum):
    """Which side is authoritative for a run."""
    TO_DIRECTORY = "to-directory"
    TO_COMMUNITY = "to-community"


class MembershipStatus(str, Enum):
    """Status of a Directory membership record. Records are never deleted."""
    ADDED = "Added"
    PENDING = "Pending"
    REMOVED = "Removed"


class MirrorKind(str, Enum):
    """The two Directory groups kept for every Community group."""
    MEMBER = "member"
    ACL = "acl"


@dataclass
class CommunityGroup:
    id: int
    name: str
    description: str = ""
    parent_id: int = 0
    is_active: bool = True


@dataclass
class CommunityMembership:
    """One (group, member) row on the Community side."""
    group_id: int
    member_id: int
    is_admin: bool = False
    is_active: bool = True

    @property
    def role(self) -> Role:
        return Role.ADMIN if self.is_admin else Role.MEMBER


@dataclass
class DirectoryGroup:
    id: int
    title: str
    description: str = ""
    source: str = ""
    is_active: bool = True
    kind: Optional[MirrorKind] = None
    parents: List[int] = field(default_factory=list)


@dataclass
class GroupContact:
    """
    One (group, contact) membership record on the Directory side.
    member_id is the Community member the contact belongs to, when known.
    """
    group_id: int
    contact_id: int
    status: MembershipStatus = MembershipStatus.ADDED
    member_id: Optional[int] = None
    group_source: str = ""

    @property
    def is_active(self) -> bool:
        return self.status != MembershipStatus.REMOVED


@dataclass(frozen=True)
class GroupPair:
    """The membership mirror and access-control mirror of one Community group."""
    community_group_id: int
    member_group_id: int
    acl_group_id: int

    def group_id_for(self, kind: MirrorKind) -> int:
        if kind is MirrorKind.ACL:
            return self.acl_group_id
        return self.member_group_id


@dataclass
class SyncResult:
    """Outcome of reconciling one member of one group."""
    member_mirror_changed: bool = False
    acl_mirror_changed: bool = False
    skipped: bool = False
    removed: int = 0

    @property
    def changed(self) -> bool:
        return self.member_mirror_changed or self.acl_mirror_changed

    @property
    def noop(self) -> bool:
        return not self.changed


@dataclass
class PageReport:
    """Counts for one page of a batch, used for progress reporting."""
    processed: int = 0
    changed: int = 0
    skipped: int = 0
    failed: int = 0
    # Scanned records that left the scanned listing while the page was applied
    removed: int = 0

    def merge(self, other: "PageReport") -> "PageReport":
        return PageReport(
            processed=self.processed + other.processed,
            changed=self.changed + other.changed,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
            removed=self.removed + other.removed,
        )


_SOURCE_RE = re.compile(r"^(?P<prefix>.*?) :(?P<id>\d+):$")


class SourceTags:
    """
    Builds and parses the "source" tag stored on each mirror group.

    A membership mirror carries "<prefix> :<id>:" and an access-control
    mirror "<prefix> ACL :<id>:", where <id> is the Community group id.
    """

    def __init__(self, prefix: str = DEFAULT_SOURCE_PREFIX):
        self.prefix = prefix

    def member(self, community_group_id: int) -> str:
        return f"{self.prefix} :{community_group_id}:"

    def acl(self, community_group_id: int) -> str:
        return f"{self.prefix} ACL :{community_group_id}:"

    def for_kind(self, kind: MirrorKind, community_group_id: int) -> str:
        if kind is MirrorKind.ACL:
            return self.acl(community_group_id)
        return self.member(community_group_id)

    def container(self) -> str:
        return f"{self.prefix} Container"

    def parse(self, source: Optional[str]) -> Optional[Tuple[int, MirrorKind]]:
        """Return (community group id, mirror kind), or None for foreign groups."""
        if not source:
            return None
        match = _SOURCE_RE.match(source.strip())
        if not match:
            return None
        prefix = match.group("prefix")
        if prefix == self.prefix:
            kind = MirrorKind.MEMBER
        elif prefix == f"{self.prefix} ACL":
            kind = MirrorKind.ACL
        else:
            return None
        return int(match.group("id")), kind

    def is_synced(self, source: Optional[str]) -> bool:
        return self.parse(source) is not None


def acl_title(title: str) -> str:
    """Title of an access-control mirror; never applies the suffix twice."""
    base = title
    while base.endswith(ACL_TITLE_SUFFIX):
        base = base[:-len(ACL_TITLE_SUFFIX)]
    return f"{base}{ACL_TITLE_SUFFIX}"
