"""
Source directory reader.

Reads the enabled members of an on-premises group. Disabled accounts are
counted but never enter the returned identity set, so they are always
removal candidates on the cloud side.
"""

import logging
from typing import NamedTuple

from group_sync.errors import MemberResolutionError, SourceGroupNotFound
from group_sync.identity import IdentitySet
from group_sync.ldap_client import LDAPClient

logger = logging.getLogger(__name__)


class SourceMembership(NamedTuple):
    """Enabled members of a source group plus the counts reported alongside them."""

    enabled: IdentitySet
    disabled_count: int
    skipped_count: int = 0

    @property
    def total(self) -> int:
        return len(self.enabled) + self.disabled_count + self.skipped_count


class SourceDirectoryReader:
    """Reads group membership from the authoritative directory."""

    def __init__(self, ldap_client: LDAPClient):
        self.ldap_client = ldap_client

    def read_source_members(self, group_identifier: str) -> SourceMembership:
        """
        Read the enabled members of a source group.

        Args:
            group_identifier: DN, account name or mail address of the group

        Returns:
            SourceMembership with enabled identities, disabled and skipped counts

        Raises:
            SourceGroupNotFound: If the group resolves neither by identifier nor by mail
            LDAPQueryError: If the directory cannot be queried
        """
        group = self.ldap_client.find_group(group_identifier)
        if not group:
            raise SourceGroupNotFound(group_identifier)

        logger.debug(f"Resolved source group '{group_identifier}' to {group['dn']}")

        enabled = IdentitySet()
        disabled_count = 0
        skipped_count = 0

        for member_dn in self.ldap_client.get_group_member_dns(group['dn']):
            try:
                record = self.ldap_client.get_user_record(member_dn)
            except MemberResolutionError as e:
                skipped_count += 1
                logger.warning(f"Skipped invalid member: {e}")
                continue

            if not record['enabled']:
                disabled_count += 1
                logger.debug(f"Excluding disabled account {record['dn']}")
                continue

            if not record['principal_name']:
                skipped_count += 1
                logger.warning(f"Skipped member without principal name: {record['dn']}")
                continue

            enabled.add(record['principal_name'])

        membership = SourceMembership(enabled, disabled_count, skipped_count)
        logger.info(f"Source group '{group_identifier}': {len(enabled)} enabled, "
                    f"{disabled_count} disabled, {skipped_count} skipped, {membership.total} total")
        return membership
