"""
Access token providers for the cloud APIs.

The sync engine never handles credentials itself; it asks a TokenProvider for
a bearer token per API scope. MsalTokenProvider implements the app-only
client credentials flow with a certificate (thumbprint plus private key, or a
PKCS#12 bundle) or a client secret.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple

import msal
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

logger = logging.getLogger(__name__)

GRAPH_SCOPE = 'https://graph.microsoft.com/.default'
EXCHANGE_SCOPE = 'https://outlook.office365.com/.default'


class TokenAcquisitionError(Exception):
    """Raised when an access token cannot be obtained."""
    pass


class TokenProvider(ABC):
    """Supplies bearer tokens for cloud API scopes."""

    @abstractmethod
    def get_token(self, scope: str) -> str:
        """
        Return a valid access token for the scope.

        Raises:
            TokenAcquisitionError: If no token can be obtained
        """
        pass

    def invalidate(self, scope: str):
        """Drop any cached token for the scope so the next call fetches a new one."""
        pass


def load_certificate_credential(cloud_config: Mapping[str, Any]) -> Dict[str, str]:
    """
    Build the msal certificate credential from configuration.

    Either certificate_thumbprint with a PEM private_key_file, or a PKCS#12
    certificate_file (optionally protected by certificate_password) from which
    the key and thumbprint are extracted.

    Returns:
        Dictionary with private_key and thumbprint

    Raises:
        TokenAcquisitionError: If the files cannot be read
    """
    try:
        certificate_file = cloud_config.get('certificate_file')
        if certificate_file:
            with open(certificate_file, 'rb') as f:
                p12_data = f.read()

            password = cloud_config.get('certificate_password')
            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                p12_data, password.encode() if password else None
            )
            if not private_key or not certificate:
                raise TokenAcquisitionError(f"No key and certificate found in {certificate_file}")

            pem_key = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption()
            ).decode()
            thumbprint = certificate.fingerprint(hashes.SHA1()).hex().upper()
            logger.info(f"Loaded PKCS12 certificate {certificate_file} (thumbprint {thumbprint})")
            return {'private_key': pem_key, 'thumbprint': thumbprint}

        with open(cloud_config['private_key_file'], 'r') as f:
            pem_key = f.read()
        thumbprint = str(cloud_config['certificate_thumbprint']).replace(':', '').upper()
        return {'private_key': pem_key, 'thumbprint': thumbprint}

    except (OSError, ValueError, KeyError) as e:
        raise TokenAcquisitionError(f"Failed to load certificate credential: {e}")


class MsalTokenProvider(TokenProvider):
    """App-only token provider backed by an msal confidential client."""

    # Refresh this many seconds before the token actually expires
    EXPIRY_MARGIN = 60

    def __init__(self, cloud_config: Mapping[str, Any], application: Optional[msal.ConfidentialClientApplication] = None):
        """
        Initialize the provider.

        Args:
            cloud_config: The cloud configuration section
            application: Pre-built msal application (tests)
        """
        self.tenant_id = cloud_config['tenant_id']
        self.client_id = cloud_config['client_id']
        self.authority = f"{cloud_config.get('authority_host', 'https://login.microsoftonline.com')}/{self.tenant_id}"
        self._cloud_config = cloud_config
        self._application = application
        self._tokens: Dict[str, Tuple[str, float]] = {}

    def _get_application(self) -> msal.ConfidentialClientApplication:
        if self._application is None:
            if self._cloud_config.get('client_secret') and not (
                    self._cloud_config.get('certificate_file') or self._cloud_config.get('private_key_file')):
                credential = self._cloud_config['client_secret']
                logger.debug(f"Using client secret credential for application {self.client_id}")
            else:
                credential = load_certificate_credential(self._cloud_config)
                logger.debug(f"Using certificate credential for application {self.client_id}")

            self._application = msal.ConfidentialClientApplication(
                self.client_id,
                authority=self.authority,
                client_credential=credential
            )
        return self._application

    def get_token(self, scope: str) -> str:
        cached = self._tokens.get(scope)
        if cached and time.time() < cached[1]:
            return cached[0]

        try:
            result = self._get_application().acquire_token_for_client(scopes=[scope])
        except (ValueError, OSError) as e:
            # msal rejects bad keys and authorities with ValueError; transport errors are OSError
            raise TokenAcquisitionError(f"Token request for {scope} failed: {e}")

        access_token = result.get('access_token') if result else None
        if not access_token:
            error = (result or {}).get('error_description') or (result or {}).get('error') or 'no token returned'
            raise TokenAcquisitionError(f"Token request for {scope} failed: {error}")

        expires_in = int(result.get('expires_in', 3600))
        self._tokens[scope] = (access_token, time.time() + expires_in - self.EXPIRY_MARGIN)
        logger.debug(f"Obtained access token for {scope}")
        return access_token

    def invalidate(self, scope: str):
        self._tokens.pop(scope, None)
        if self._application is not None:
            # msal caches app tokens itself
            self._application.remove_tokens_for_client()
