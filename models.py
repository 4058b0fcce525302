"""
DiffSync models for whole-roster group reconciliation
"""

from diffsync import DiffSyncModel
from typing import Optional


class GroupMembership(DiffSyncModel):
    """
    DiffSync model representing one member of one Community group.
    role is "member" or "admin"; is_active is False for a member whose
    account is not active yet (a Pending record on the Directory side).
    """
    _modelname = "membership"
    _identifiers = ("group_id", "member_id")
    _attributes = ("role", "is_active")

    group_id: int
    member_id: int
    role: str = "member"
    is_active: bool = True

    def _queue(self, adapter, operation: str, role: str, previous_role: Optional[str],
               is_active: bool) -> None:
        # Queue the operation for the target adapter to execute
        if hasattr(adapter, 'pending_operations'):
            adapter.pending_operations.append(
                (operation, self.group_id, self.member_id, role, previous_role, is_active)
            )

    @classmethod
    def create(cls, adapter, ids, attrs):
        """Create this membership in the target roster."""
        membership = cls(**ids, **attrs)
        membership.adapter = adapter
        membership._queue(adapter, 'create', membership.role, None, membership.is_active)
        return membership

    def update(self, attrs):
        """Change the role or activity of this membership in the target roster."""
        self._queue(
            self.adapter,
            'update',
            attrs.get('role', self.role),
            self.role,
            attrs.get('is_active', self.is_active),
        )
        return super().update(attrs)

    def delete(self) -> Optional["GroupMembership"]:
        """Delete this membership from the target roster."""
        self._queue(self.adapter, 'delete', self.role, self.role, self.is_active)
        return self
