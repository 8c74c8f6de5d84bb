"""
Exchange Online client for distribution group membership.

Distribution groups cannot be changed through Graph, so membership changes
go through the Exchange Online admin API, which runs the distribution group
cmdlets over REST.
"""

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

from group_sync.cloud.auth import EXCHANGE_SCOPE, TokenProvider
from group_sync.cloud.base import CloudAPIBase

logger = logging.getLogger(__name__)

# Well-known system mailbox used to route admin API calls to the tenant
ANCHOR_MAILBOX = 'SystemMailbox{bb558c35-97f1-4cb9-8ff7-d53741dc928c}'


class ExchangeClient(CloudAPIBase):
    """Runs distribution group member cmdlets through the admin API InvokeCommand endpoint."""

    name = 'Exchange Online'

    def __init__(self, cloud_config: Mapping[str, Any], token_provider: TokenProvider,
                 error_handling: Optional[Mapping[str, Any]] = None):
        self.organization = cloud_config.get('organization') or cloud_config['tenant_id']
        base_url = cloud_config.get('exchange_url', 'https://outlook.office365.com/adminapi/beta')
        super().__init__(
            f"{base_url.rstrip('/')}/{quote(self.organization, safe='')}",
            token_provider,
            EXCHANGE_SCOPE,
            error_handling=error_handling,
            verify_ssl=cloud_config.get('verify_ssl', True),
            timeout=cloud_config.get('timeout', 30)
        )

    def invoke_command(self, cmdlet: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one cmdlet.

        Args:
            cmdlet: Cmdlet name, e.g. Add-DistributionGroupMember
            parameters: Cmdlet parameters

        Returns:
            Parsed response
        """
        body = {'CmdletInput': {'CmdletName': cmdlet, 'Parameters': parameters}}
        headers = {'X-CmdletName': cmdlet, 'X-ResponseFormat': 'json'}
        if '.' in self.organization:
            headers['X-AnchorMailbox'] = f"UPN:{ANCHOR_MAILBOX}@{self.organization}"
        logger.debug(f"Invoking {cmdlet} on {self.organization}")
        return self.request('POST', 'InvokeCommand', body=body, headers=headers)

    def add_distribution_group_member(self, group_identity: str, member: str):
        """Add a member, by principal name, to a distribution group given by address or id."""
        self.invoke_command('Add-DistributionGroupMember', {
            'Identity': group_identity,
            'Member': member,
            'BypassSecurityGroupManagerCheck': True
        })

    def remove_distribution_group_member(self, group_identity: str, member: str):
        """Remove a member from a distribution group by principal name, without confirmation."""
        self.invoke_command('Remove-DistributionGroupMember', {
            'Identity': group_identity,
            'Member': member,
            'BypassSecurityGroupManagerCheck': True,
            'Confirm': False
        })
