"""
Exceptions raised by the sync engine and its collaborators
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync failures."""


class CollaboratorError(SyncError):
    """A call to an external record store failed. Safe to retry later."""


class DirectoryError(CollaboratorError):
    """The Directory record store could not complete a call."""


class CommunityError(CollaboratorError):
    """The Community record store could not complete a call."""


class AclError(CollaboratorError):
    """The ACL collaborator could not complete a call."""


class PartialMirrorError(SyncError):
    """Only one half of a group pair could be created."""

    def __init__(self, message: str, community_group_id: int, orphan_id: Optional[int] = None):
        super().__init__(message)
        self.community_group_id = community_group_id
        # Set when the compensating delete failed too
        self.orphan_id = orphan_id


class AclLinkError(SyncError):
    """Both mirrors exist but the access-control linkage could not be made."""

    def __init__(self, message: str, community_group_id: int):
        super().__init__(message)
        self.community_group_id = community_group_id


class AmbiguousMappingError(SyncError):
    """More than one Directory record matches a deterministic source tag."""

    def __init__(self, message: str, source: str, group_ids=()):
        super().__init__(message)
        self.source = source
        self.group_ids = tuple(group_ids)


class CursorStoreError(SyncError):
    """The persistent state store cannot be read or written."""


class BatchLockedError(SyncError):
    """Another invocation is already running for this batch identifier."""
