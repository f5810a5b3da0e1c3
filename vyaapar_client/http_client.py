"""
HTTP client for the Vyaapar API.

This module provides the shared transport used by every feature call. It
attaches the current access token to each request, applies a fixed timeout,
normalizes failures into the client exception hierarchy and hands 401
responses to the refresh coordinator.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, TYPE_CHECKING
import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from vyaapar_shared.exceptions import (
    ErrorCode, NetworkError, ServerError, UnauthorizedError
)
from vyaapar_shared.interfaces import ICredentialStore
from vyaapar_client.auth.credential_store import ACCESS_TOKEN_KEY

if TYPE_CHECKING:
    from vyaapar_client.auth.refresh_coordinator import RefreshCoordinator

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Something went wrong. Please try again."


@dataclass
class ApiRequest:
    """One logical request, kept intact so it can be replayed after a refresh."""
    method: str
    path: str
    body: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None
    authenticated: bool = True
    headers: Dict[str, str] = field(default_factory=dict)
    retried: bool = False
    sent_token: Optional[str] = None


class HttpClient:
    """
    HTTP client shared by every feature of the application.

    The access token is read from the credential store when each request is
    sent, never cached, so a token refreshed mid-session is picked up without
    any caller involvement.
    """

    def __init__(
        self,
        base_url: str,
        credential_store: ICredentialStore,
        timeout: float = 15.0,
        app_version: str = "1.0.0",
        platform: str = "mobile"
    ):
        self.base_url = base_url.rstrip('/')
        self.credential_store = credential_store
        self.timeout = ClientTimeout(total=timeout)
        self.app_version = app_version
        self.platform = platform

        self._session: Optional[ClientSession] = None
        self._refresh_coordinator: Optional['RefreshCoordinator'] = None

        logger.info(f"HTTP client initialized for API: {self.base_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def attach_refresh_coordinator(self, coordinator: 'RefreshCoordinator') -> None:
        """Route 401 responses of authenticated requests to the coordinator."""
        self._refresh_coordinator = coordinator

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=20,
                limit_per_host=10,
                keepalive_timeout=30
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': f'VyaaparClient/{self.app_version}',
                    'Accept': 'application/json',
                    'X-App-Platform': self.platform,
                    'X-App-Version': self.app_version
                }
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _url(self, path: str) -> str:
        if path.startswith(('http://', 'https://')):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def send(self, request: ApiRequest) -> Any:
        """
        Perform a single HTTP round trip.

        Returns:
            Decoded JSON body, or an empty dict for empty responses

        Raises:
            NetworkError: On connectivity failure or timeout
            UnauthorizedError: On a 401 response
            ServerError: On any other non-success response
        """
        await self._ensure_session()

        url = self._url(request.path)
        headers = dict(request.headers)
        if request.authenticated:
            token = self.credential_store.get(ACCESS_TOKEN_KEY)
            request.sent_token = token
            if token:
                headers['Authorization'] = f'Bearer {token}'
        if request.body is not None:
            headers['Content-Type'] = 'application/json'

        logger.debug(f"{request.method} {url}{' (replay)' if request.retried else ''}")

        try:
            async with self._session.request(
                method=request.method,
                url=url,
                json=request.body,
                params=request.params,
                headers=headers
            ) as response:
                if 200 <= response.status < 300:
                    return await self._read_body(response)

                error_data = await self._get_error_response(response)
                message = (
                    error_data.get('message')
                    or error_data.get('detail')
                    or response.reason
                    or DEFAULT_ERROR_MESSAGE
                )
                code = error_data.get('code') or 'UNKNOWN'
                context = {'method': request.method, 'path': request.path}

                if response.status == 401:
                    raise UnauthorizedError(message, code=code, context=context)

                logger.debug(f"{request.method} {request.path} failed with {response.status} ({code})")
                raise ServerError(
                    message,
                    status_code=response.status,
                    code=code,
                    context=context
                )

        except asyncio.TimeoutError as e:
            logger.warning(f"Request timed out: {request.method} {request.path}")
            raise NetworkError(
                f"Request timed out after {self.timeout.total}s",
                ErrorCode.NETWORK_TIMEOUT,
                cause=e,
                context={'method': request.method, 'path': request.path}
            ) from e
        except (ClientError, OSError) as e:
            logger.warning(f"Network error on {request.method} {request.path}: {e}")
            raise NetworkError(
                f"Network request failed: {e}",
                ErrorCode.NETWORK_CONNECTION_FAILED,
                cause=e,
                context={'method': request.method, 'path': request.path}
            ) from e

    async def _read_body(self, response: aiohttp.ClientResponse) -> Any:
        try:
            data = await response.json(content_type=None)
        except ValueError:
            # Non-JSON success bodies carry nothing the callers use
            return {}
        return data if data is not None else {}

    async def _get_error_response(self, response: aiohttp.ClientResponse) -> Dict[str, Any]:
        """Extract error information from response."""
        try:
            data = await response.json(content_type=None)
            if isinstance(data, dict):
                return data
        except ValueError:
            pass
        try:
            text = await response.text()
        except ClientError:
            text = ""
        return {'detail': text} if text else {}

    async def execute(self, request: ApiRequest) -> Any:
        """Send a request, letting the refresh coordinator recover from a 401."""
        try:
            return await self.send(request)
        except UnauthorizedError as e:
            if request.authenticated and self._refresh_coordinator is not None:
                return await self._refresh_coordinator.handle_unauthorized(request, e)
            raise

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        """
        Make an API request.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: API path relative to the base URL
            body: JSON request body
            params: Query parameters
            authenticated: Whether to attach the access token
            headers: Extra request headers

        Returns:
            Decoded JSON response
        """
        return await self.execute(ApiRequest(
            method=method.upper(),
            path=path,
            body=body,
            params=params,
            authenticated=authenticated,
            headers=headers or {}
        ))

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request('GET', path, params=params, **kwargs)

    async def post(self, path: str, body: Optional[Any] = None, **kwargs) -> Any:
        return await self.request('POST', path, body=body, **kwargs)

    async def put(self, path: str, body: Optional[Any] = None, **kwargs) -> Any:
        return await self.request('PUT', path, body=body, **kwargs)

    async def patch(self, path: str, body: Optional[Any] = None, **kwargs) -> Any:
        return await self.request('PATCH', path, body=body, **kwargs)

    async def delete(self, path: str, body: Optional[Any] = None, **kwargs) -> Any:
        return await self.request('DELETE', path, body=body, **kwargs)
