"""
Cloud directory clients: token providers, Microsoft Graph and Exchange Online.
"""

from group_sync.cloud.auth import MsalTokenProvider, TokenAcquisitionError, TokenProvider
from group_sync.cloud.base import CloudAPIBase, CloudAPIError, CloudAuthenticationError
from group_sync.cloud.exchange import ExchangeClient
from group_sync.cloud.graph import GraphClient

__all__ = [
    'CloudAPIBase',
    'CloudAPIError',
    'CloudAuthenticationError',
    'ExchangeClient',
    'GraphClient',
    'MsalTokenProvider',
    'TokenAcquisitionError',
    'TokenProvider',
]
