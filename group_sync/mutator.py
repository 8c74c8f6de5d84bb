"""
Membership mutator.

Applies additions and removals to a cloud group through the API that fits
its classification. Each identity is attempted on its own; a failure is
recorded in its MutationOutcome and never stops the rest of the batch.
"""

import logging
from typing import Iterable, List

from group_sync.cloud.base import CloudAPIError
from group_sync.cloud.exchange import ExchangeClient
from group_sync.cloud.graph import GraphClient
from group_sync.errors import MutationError
from group_sync.logging_setup import AuditLogger, audit_logger
from group_sync.models import CloudGroupDescriptor, DistributionGroup, MutationOutcome

logger = logging.getLogger(__name__)

ADD = 'add'
REMOVE = 'remove'

ALREADY_MEMBER_MARKERS = ('already exist', 'already a member', 'memberalreadyexists')
NOT_MEMBER_MARKERS = ("isn't a member", 'is not a member', 'membernotfound')


def _already_applied(error: CloudAPIError, operation: str, descriptor: CloudGroupDescriptor) -> bool:
    """Tell whether a rejected change means the group is already in the wanted state."""
    message = str(error).lower()
    if operation == ADD:
        return any(marker in message for marker in ALREADY_MEMBER_MARKERS)
    if isinstance(descriptor, DistributionGroup):
        return any(marker in message for marker in NOT_MEMBER_MARKERS)
    return error.status_code == 404


class MembershipMutator:
    """Adds and removes cloud group members one identity at a time."""

    def __init__(self, graph: GraphClient, exchange: ExchangeClient, audit: AuditLogger = audit_logger):
        self.graph = graph
        self.exchange = exchange
        self.audit = audit

    def apply_add(self, descriptor: CloudGroupDescriptor, identity: str) -> MutationOutcome:
        """Add one identity to the group, returning the outcome instead of raising."""
        return self._apply(descriptor, identity, ADD)

    def apply_remove(self, descriptor: CloudGroupDescriptor, identity: str) -> MutationOutcome:
        """Remove one identity from the group, returning the outcome instead of raising."""
        return self._apply(descriptor, identity, REMOVE)

    def apply_batch(self, descriptor: CloudGroupDescriptor, identities: Iterable[str],
                    operation: str) -> List[MutationOutcome]:
        """
        Apply one operation to every identity, serially.

        Args:
            descriptor: Classified cloud group
            identities: Identities to add or remove
            operation: 'add' or 'remove'

        Returns:
            One MutationOutcome per identity, in sorted identity order
        """
        if operation not in (ADD, REMOVE):
            raise ValueError(f"Unknown membership operation: {operation}")
        return [self._apply(descriptor, identity, operation) for identity in sorted(identities)]

    def _apply(self, descriptor: CloudGroupDescriptor, identity: str, operation: str) -> MutationOutcome:
        try:
            self._dispatch(descriptor, identity, operation)
        except MutationError as e:
            return self._failed(descriptor, identity, operation, e.reason)
        except CloudAPIError as e:
            if _already_applied(e, operation, descriptor):
                logger.debug(f"{operation} {identity} on {descriptor.label} already in effect: {e}")
            else:
                return self._failed(descriptor, identity, operation, str(e))
        except Exception as e:
            logger.error(f"Unexpected error during {operation} of {identity} on {descriptor.label}: {e}",
                         exc_info=True)
            return self._failed(descriptor, identity, operation, f"unexpected error: {e}")

        self.audit.log_membership_change(operation, identity, descriptor.label, success=True)
        return MutationOutcome(identity, operation)

    def _failed(self, descriptor: CloudGroupDescriptor, identity: str, operation: str,
                reason: str) -> MutationOutcome:
        self.audit.log_membership_change(operation, identity, descriptor.label, success=False, detail=reason)
        return MutationOutcome(identity, operation, error=reason)

    def _dispatch(self, descriptor: CloudGroupDescriptor, identity: str, operation: str):
        if isinstance(descriptor, DistributionGroup):
            # Exchange cmdlets resolve groups by address or name
            group_identity = descriptor.mail or descriptor.group_id
            if operation == ADD:
                self.exchange.add_distribution_group_member(group_identity, identity)
            else:
                self.exchange.remove_distribution_group_member(group_identity, identity)
            return

        object_id = self.graph.find_user_id(identity)
        if not object_id:
            raise MutationError(identity, operation, "user not found in cloud directory")

        if operation == ADD:
            self.graph.add_group_member(descriptor.group_id, object_id)
        else:
            self.graph.remove_group_member(descriptor.group_id, object_id)
