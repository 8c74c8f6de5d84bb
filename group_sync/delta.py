"""
Membership delta calculation.
"""

from typing import NamedTuple

from group_sync.identity import IdentitySet


class MembershipDelta(NamedTuple):
    """Additions and removals that make the cloud group match the source group."""

    to_add: IdentitySet
    to_remove: IdentitySet

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def compute_delta(source_enabled: IdentitySet, cloud_members: IdentitySet) -> MembershipDelta:
    """
    Compute the changes needed to reconcile cloud membership with the source.

    Identities present on both sides are left alone, so running this again
    after the delta has been applied yields an empty delta.

    Args:
        source_enabled: Enabled members of the source group
        cloud_members: Current user members of the cloud group

    Returns:
        MembershipDelta with identities to add and identities to remove
    """
    to_add = IdentitySet(identity for identity in source_enabled if identity not in cloud_members)
    to_remove = IdentitySet(identity for identity in cloud_members if identity not in source_enabled)
    return MembershipDelta(to_add, to_remove)
