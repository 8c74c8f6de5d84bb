"""
Microsoft Graph client for group and user operations.
"""

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional
from urllib.parse import quote

from group_sync.cloud.auth import GRAPH_SCOPE, TokenProvider
from group_sync.cloud.base import CloudAPIBase, CloudAPIError

logger = logging.getLogger(__name__)

GROUP_SELECT = 'id,displayName,mail,mailEnabled,securityEnabled,groupTypes'
MEMBER_SELECT = 'id,userPrincipalName'
MAX_PAGE_SIZE = 999


def _is_not_found(error: CloudAPIError) -> bool:
    if error.status_code == 404:
        return True
    # Graph answers malformed object ids with 400 instead of 404
    return error.status_code == 400 and 'invalid object identifier' in str(error).lower()


class GraphClient(CloudAPIBase):
    """Graph v1.0 client covering the calls the sync engine needs."""

    name = 'Microsoft Graph'

    def __init__(self, cloud_config: Mapping[str, Any], token_provider: TokenProvider,
                 error_handling: Optional[Mapping[str, Any]] = None):
        super().__init__(
            cloud_config.get('graph_url', 'https://graph.microsoft.com/v1.0'),
            token_provider,
            GRAPH_SCOPE,
            error_handling=error_handling,
            verify_ssl=cloud_config.get('verify_ssl', True),
            timeout=cloud_config.get('timeout', 30)
        )
        self.page_size = min(int(cloud_config.get('page_size', MAX_PAGE_SIZE)), MAX_PAGE_SIZE)

    def get_group(self, group_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a group resource.

        Returns:
            Group resource, or None if the identifier does not resolve
        """
        try:
            return self.request('GET', f"groups/{quote(group_id, safe='')}", params={'$select': GROUP_SELECT})
        except CloudAPIError as e:
            if _is_not_found(e):
                return None
            raise

    def iter_group_member_pages(self, group_id: str) -> Iterator[List[Dict[str, Any]]]:
        """
        Lazily yield pages of a group's direct members.

        Follows @odata.nextLink until the service stops returning one.

        Args:
            group_id: Object id of the group

        Yields:
            Lists of directory object resources, one list per page
        """
        next_url: Optional[str] = f"groups/{quote(group_id, safe='')}/members"
        params: Optional[Dict[str, Any]] = {'$select': MEMBER_SELECT, '$top': self.page_size}
        page_number = 0

        while next_url:
            response = self.request('GET', next_url, params=params)
            page_number += 1
            page = response.get('value', [])
            logger.debug(f"Members page {page_number} of group {group_id}: {len(page)} entries")
            yield page

            next_url = response.get('@odata.nextLink')
            # The continuation link already carries the query
            params = None

    def find_user_id(self, principal_name: str) -> Optional[str]:
        """
        Resolve a user principal name to its directory object id.

        Returns:
            Object id, or None if no such user exists
        """
        try:
            user = self.request('GET', f"users/{quote(principal_name, safe='@')}", params={'$select': 'id'})
        except CloudAPIError as e:
            if _is_not_found(e):
                return None
            raise
        return user.get('id')

    def add_group_member(self, group_id: str, object_id: str):
        """Add a directory object to a group by reference."""
        body = {'@odata.id': f"{self.base_url}/directoryObjects/{object_id}"}
        self.request('POST', f"groups/{quote(group_id, safe='')}/members/$ref", body=body)

    def remove_group_member(self, group_id: str, object_id: str):
        """Remove a directory object reference from a group."""
        self.request('DELETE', f"groups/{quote(group_id, safe='')}/members/{quote(object_id, safe='')}/$ref")
