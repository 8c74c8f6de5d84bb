"""
Data model shared by the readers, the mutator and the orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class GroupMapping:
    """Pairs an on-premises group with the cloud group it feeds."""

    source_group: str
    cloud_group: str

    def __str__(self) -> str:
        return f"{self.source_group} -> {self.cloud_group}"


@dataclass(frozen=True)
class CloudGroupDescriptor:
    """Read-only description of a cloud group, fetched once per mapping."""

    group_id: str
    display_name: str = ''
    mail: Optional[str] = None
    mail_enabled: bool = False
    group_types: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return self.display_name or self.mail or self.group_id


@dataclass(frozen=True)
class DistributionGroup(CloudGroupDescriptor):
    """Exchange distribution group, managed through the distribution list cmdlets."""

    kind = 'distribution'


@dataclass(frozen=True)
class DirectoryGroup(CloudGroupDescriptor):
    """Microsoft 365 or security group, managed through directory object references."""

    kind = 'directory'


def classify_group(payload: Dict[str, Any]) -> CloudGroupDescriptor:
    """
    Build the descriptor variant for a group returned by the cloud directory.

    A group with no group-type tags that is mail-enabled is an Exchange
    distribution group. Every other combination is a directory-object group.

    Args:
        payload: Group resource as returned by the cloud API

    Returns:
        DistributionGroup or DirectoryGroup
    """
    group_types = tuple(payload.get('groupTypes') or ())
    mail_enabled = bool(payload.get('mailEnabled', False))

    descriptor_class = DistributionGroup if (not group_types and mail_enabled) else DirectoryGroup
    return descriptor_class(
        group_id=payload['id'],
        display_name=payload.get('displayName') or '',
        mail=payload.get('mail'),
        mail_enabled=mail_enabled,
        group_types=group_types
    )


@dataclass(frozen=True)
class MutationOutcome:
    """Result of adding or removing one identity."""

    identity: str
    operation: str
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class SyncResult:
    """
    Outcome of one mapping's sync pass.

    Owned by the orchestrator while the mapping is processed, then reported.
    """

    mapping: GroupMapping
    status: str = 'pending'
    error: Optional[str] = None
    group_kind: Optional[str] = None
    source_enabled: int = 0
    source_disabled: int = 0
    source_skipped: int = 0
    cloud_members: int = 0
    pending_adds: List[str] = field(default_factory=list)
    pending_removes: List[str] = field(default_factory=list)
    added: List[MutationOutcome] = field(default_factory=list)
    removed: List[MutationOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def aborted(self) -> bool:
        return self.status == 'aborted'

    @property
    def added_count(self) -> int:
        return sum(1 for outcome in self.added if outcome.succeeded)

    @property
    def removed_count(self) -> int:
        return sum(1 for outcome in self.removed if outcome.succeeded)

    @property
    def failures(self) -> List[MutationOutcome]:
        return [outcome for outcome in self.added + self.removed if not outcome.succeeded]

    @property
    def runtime_seconds(self) -> float:
        if not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the result for summaries and notifications."""
        return {
            'source_group': self.mapping.source_group,
            'cloud_group': self.mapping.cloud_group,
            'status': self.status,
            'error': self.error,
            'group_kind': self.group_kind,
            'source_enabled': self.source_enabled,
            'source_disabled': self.source_disabled,
            'source_skipped': self.source_skipped,
            'cloud_members': self.cloud_members,
            'added': self.added_count,
            'removed': self.removed_count,
            'failures': [
                {'identity': o.identity, 'operation': o.operation, 'error': o.error}
                for o in self.failures
            ],
            'runtime_seconds': round(self.runtime_seconds, 2)
        }
