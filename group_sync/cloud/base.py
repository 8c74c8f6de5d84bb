"""
Base REST client for the cloud APIs.

This module provides the HTTP plumbing shared by the Graph and Exchange
clients: a persistent HTTPS connection, bearer token handling with one
refresh on 401, JSON encoding and decoding, and bounded retries for
throttling and server errors.
"""

import json
import ssl
import logging
from http.client import HTTPSConnection, HTTPConnection, HTTPException
from typing import Dict, Any, Mapping, Optional, Union
from urllib.parse import urlencode, urlparse

from group_sync.cloud.auth import TokenProvider, TokenAcquisitionError
from group_sync.retry import (
    TransientBackendError,
    MaxRetriesExceeded,
    create_retry_callback,
    retry_call,
    retry_settings,
)

logger = logging.getLogger(__name__)


class CloudAPIError(Exception):
    """Raised when a cloud API request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[str] = None):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class CloudAuthenticationError(CloudAPIError):
    """Raised when the cloud API rejects the access token."""
    pass


class CloudAPIBase:
    """
    JSON REST client bound to one API base URL and token scope.

    Subclasses add the endpoint-specific operations.
    """

    name = 'cloud'

    def __init__(self, base_url: str, token_provider: TokenProvider, scope: str,
                 error_handling: Optional[Mapping[str, Any]] = None,
                 verify_ssl: bool = True, timeout: float = 30):
        """
        Initialize the client.

        Args:
            base_url: API root, e.g. https://graph.microsoft.com/v1.0
            token_provider: Supplies bearer tokens for the scope
            scope: Token scope requested for this API
            error_handling: Retry settings (max_retries, retry_wait_seconds, retry_backoff)
            verify_ssl: Verify the server certificate
            timeout: Socket timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.token_provider = token_provider
        self.scope = scope
        self.timeout = timeout
        self.retry_kwargs = retry_settings(error_handling or {})

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None
        if self.parsed_url.scheme == 'https':
            if verify_ssl:
                self.ssl_context = ssl.create_default_context()
            else:
                self.ssl_context = ssl._create_unverified_context()
                logger.warning(f"SSL verification disabled for {self.host}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def _build_path(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Resolve a relative endpoint or an absolute continuation URL to a request path."""
        if path.startswith('http://') or path.startswith('https://'):
            parsed = urlparse(path)
            if parsed.netloc != self.host:
                raise CloudAPIError(f"Refusing to follow URL on foreign host {parsed.netloc}")
            full_path = parsed.path + (f"?{parsed.query}" if parsed.query else '')
        else:
            full_path = f"{self.base_path}/{path.lstrip('/')}"

        if params:
            separator = '&' if '?' in full_path else '?'
            full_path += separator + urlencode(params, safe='$,')
        return full_path

    def request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                params: Optional[Dict[str, Any]] = None,
                headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Make an HTTP request, retrying transient failures.

        Args:
            method: HTTP method (GET, POST, DELETE)
            path: Endpoint path relative to the base URL, or an absolute continuation URL
            body: JSON request body
            params: Query string parameters
            headers: Additional headers

        Returns:
            Parsed JSON response ({} for empty responses)

        Raises:
            CloudAPIError: If the request fails
        """
        full_path = self._build_path(path, params)
        try:
            return retry_call(
                self._request_once,
                args=(method, full_path, body, headers),
                exceptions=(TransientBackendError,),
                on_retry=create_retry_callback(f"{self.name} {method} {full_path}"),
                **self.retry_kwargs
            )
        except MaxRetriesExceeded as e:
            status_code = getattr(e.last_exception, 'status_code', None)
            raise CloudAPIError(f"{method} {full_path} failed after {e.attempts} attempts: {e.last_exception}",
                                status_code=status_code)

    def _request_once(self, method: str, full_path: str, body: Optional[Dict[str, Any]],
                      headers: Optional[Dict[str, str]]) -> Dict[str, Any]:
        request_body = json.dumps(body) if body is not None else None

        # One token refresh on 401
        for auth_attempt in range(2):
            request_headers = {'Accept': 'application/json'}
            if headers:
                request_headers.update(headers)
            if request_body is not None:
                request_headers['Content-Type'] = 'application/json'
            try:
                request_headers['Authorization'] = f"Bearer {self.token_provider.get_token(self.scope)}"
            except TokenAcquisitionError as e:
                raise CloudAuthenticationError(f"Cannot authenticate to {self.name}: {e}")

            try:
                conn = self._get_connection()
                logger.debug(f"Making {method} request to {self.host}{full_path}")
                conn.request(method, full_path, request_body, request_headers)
                response = conn.getresponse()
                response_data = response.read().decode('utf-8')
            except (HTTPException, OSError) as e:
                self.close_connection()
                raise TransientBackendError(f"Connection error to {self.host}: {e}")

            logger.debug(f"Response status: {response.status} {response.reason}")

            if response.status == 401 and auth_attempt == 0:
                logger.info(f"401 received from {self.name}, refreshing access token")
                self.token_provider.invalidate(self.scope)
                continue

            return self._handle_response(method, full_path, response, response_data)

        raise CloudAuthenticationError(f"Authentication failed for {self.name}", status_code=401)

    def _handle_response(self, method: str, full_path: str, response, response_data: str) -> Dict[str, Any]:
        status = response.status

        if status == 401:
            raise CloudAuthenticationError(f"Authentication failed for {self.name}", status_code=401)

        if status == 429 or status >= 500:
            retry_after = None
            header_value = response.getheader('Retry-After')
            if header_value:
                try:
                    retry_after = float(header_value)
                except ValueError:
                    retry_after = None
            raise TransientBackendError(f"HTTP {status} from {self.name} for {method} {full_path}",
                                        status_code=status, retry_after=retry_after)

        if status >= 400:
            error_code, message = self._parse_error(response_data)
            raise CloudAPIError(f"HTTP {status}: {message or response.reason}",
                                status_code=status, error_code=error_code)

        if not response_data:
            return {}
        try:
            return json.loads(response_data)
        except json.JSONDecodeError as e:
            raise CloudAPIError(f"Invalid JSON response from {self.name}: {e}", status_code=status)

    @staticmethod
    def _parse_error(response_data: str):
        """Extract (code, message) from an OData error body."""
        try:
            payload = json.loads(response_data) if response_data else {}
        except json.JSONDecodeError:
            return None, response_data[:200]
        error = payload.get('error') if isinstance(payload, dict) else None
        if isinstance(error, dict):
            return error.get('code'), error.get('message')
        if isinstance(error, str):
            return error, payload.get('error_description') or error
        return None, None

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except OSError as e:
                logger.warning(f"Error closing connection to {self.host}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
