"""
Cloud directory reader.

Fetches a cloud group once, classifies it, and collects its user members
across every page the service returns.
"""

import logging
from typing import Tuple

from group_sync.cloud.graph import GraphClient
from group_sync.errors import CloudGroupNotFound
from group_sync.identity import IdentitySet
from group_sync.models import CloudGroupDescriptor, classify_group

logger = logging.getLogger(__name__)

USER_ODATA_TYPE = '#microsoft.graph.user'


class CloudDirectoryReader:
    """Reads group descriptors and user membership from the cloud directory."""

    def __init__(self, graph: GraphClient):
        self.graph = graph

    def read_cloud_group(self, group_id: str) -> Tuple[CloudGroupDescriptor, IdentitySet]:
        """
        Read a cloud group and its user members.

        Args:
            group_id: Object id of the cloud group

        Returns:
            Tuple of (descriptor, member identities)

        Raises:
            CloudGroupNotFound: If the identifier does not resolve
            CloudAPIError: If the cloud directory cannot be queried
        """
        payload = self.graph.get_group(group_id)
        if not payload:
            raise CloudGroupNotFound(group_id)

        descriptor = classify_group(payload)
        logger.debug(f"Cloud group {descriptor.label} classified as {descriptor.kind} group "
                     f"(groupTypes={list(descriptor.group_types)}, mailEnabled={descriptor.mail_enabled})")

        members = IdentitySet()
        ignored = 0
        pages = 0
        for page in self.graph.iter_group_member_pages(descriptor.group_id):
            pages += 1
            for entry in page:
                principal_name = entry.get('userPrincipalName')
                if entry.get('@odata.type') != USER_ODATA_TYPE or not principal_name or not principal_name.strip():
                    ignored += 1
                    continue
                members.add(principal_name)

        logger.info(f"Cloud group {descriptor.label}: {len(members)} user members across {pages} pages"
                    + (f", {ignored} non-user entries ignored" if ignored else ''))
        return descriptor, members
