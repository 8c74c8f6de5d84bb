"""
Exception hierarchy for group synchronization.

Mapping-level errors (a group that cannot be found) abort a single mapping.
Member-level and mutation-level errors are caught where they happen and
recorded, they never abort a mapping or the run.
"""


class SyncError(Exception):
    """Base exception for sync errors."""
    pass


class GroupNotFound(SyncError):
    """Raised when a group cannot be resolved in one of the directories."""

    def __init__(self, group_identifier: str, directory: str):
        self.group_identifier = group_identifier
        self.directory = directory
        super().__init__(f"{directory} group not found: {group_identifier}")


class SourceGroupNotFound(GroupNotFound):
    """Raised when the on-premises group resolves neither by identifier nor by mail."""

    def __init__(self, group_identifier: str):
        super().__init__(group_identifier, 'Source')


class CloudGroupNotFound(GroupNotFound):
    """Raised when the cloud group identifier does not resolve."""

    def __init__(self, group_identifier: str):
        super().__init__(group_identifier, 'Cloud')


class MemberResolutionError(SyncError):
    """Raised when a member reference of a source group cannot be resolved to a user."""

    def __init__(self, member_dn: str, reason: str):
        self.member_dn = member_dn
        self.reason = reason
        super().__init__(f"Cannot resolve member {member_dn}: {reason}")


class MutationError(SyncError):
    """Raised when adding or removing a single identity from a cloud group fails."""

    def __init__(self, identity: str, operation: str, reason: str):
        self.identity = identity
        self.operation = operation
        self.reason = reason
        super().__init__(f"Failed to {operation} {identity}: {reason}")
