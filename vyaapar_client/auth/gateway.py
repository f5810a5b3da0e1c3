"""
Authentication endpoint gateways.

``HttpAuthGateway`` talks to the real backend through the shared HTTP client.
``MockAuthGateway`` returns canned data after a short delay for development
builds without a backend.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Dict, Any

from vyaapar_shared.exceptions import ErrorCode, VyaaparError
from vyaapar_shared.interfaces import IAuthGateway
from vyaapar_shared.models import AuthResponse

from vyaapar_client.http_client import HttpClient

logger = logging.getLogger(__name__)


def _parse_auth_response(data: Any) -> AuthResponse:
    try:
        return AuthResponse.from_api(data)
    except (KeyError, TypeError, ValueError) as e:
        raise VyaaparError(
            f"Malformed authentication response: {e}",
            error_code=ErrorCode.NETWORK_INVALID_RESPONSE,
            cause=e,
            code='INVALID_RESPONSE',
            user_message="Something went wrong. Please try again."
        )


class HttpAuthGateway(IAuthGateway):
    """Gateway for the backend ``/auth`` endpoints."""

    def __init__(self, http_client: HttpClient):
        self.http_client = http_client

    # Auth endpoints never carry the access token, so a 401 from them
    # (wrong OTP, dead refresh token) is never routed into a refresh.

    async def send_otp(self, mobile: str) -> Dict[str, Any]:
        return await self.http_client.post('/auth/send-otp', {'mobile': mobile}, authenticated=False)

    async def resend_otp(self, mobile: str) -> Dict[str, Any]:
        return await self.http_client.post('/auth/resend-otp', {'mobile': mobile}, authenticated=False)

    async def verify_otp(self, mobile: str, otp: str) -> AuthResponse:
        data = await self.http_client.post(
            '/auth/verify-otp', {'mobile': mobile, 'otp': otp}, authenticated=False
        )
        return _parse_auth_response(data)

    async def login_with_provider_token(self, id_token: str) -> AuthResponse:
        data = await self.http_client.post('/auth/google', {'idToken': id_token}, authenticated=False)
        return _parse_auth_response(data)

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return await self.http_client.post(
            '/auth/refresh', {'refreshToken': refresh_token}, authenticated=False
        )

    async def revoke(self, refresh_token: str) -> None:
        await self.http_client.post('/auth/logout', {'refreshToken': refresh_token}, authenticated=False)


MOCK_OTP_NEW_USER = '999999'


class MockAuthGateway(IAuthGateway):
    """
    Development gateway returning a fixed user and tokens.

    Any well-formed OTP is accepted. ``999999`` logs in as a new user so the
    profile setup path can be exercised.
    """

    def __init__(self, delay: float = 0.8):
        self.delay = delay

    async def _pause(self) -> None:
        if self.delay > 0:
            await asyncio.sleep(self.delay)

    def _mock_auth_response(self, mobile: str, is_new_user: bool) -> AuthResponse:
        return AuthResponse.from_api({
            'user': {
                'id': 'usr_mock_001',
                'mobile': mobile,
                'name': '' if is_new_user else 'Arjun Sharma',
                'isNewUser': is_new_user,
                'isBusinessSetup': not is_new_user,
                'plan': 'starter',
                'createdAt': datetime.now().isoformat()
            },
            'tokens': {
                'accessToken': f'mock_access_{uuid.uuid4().hex}',
                'refreshToken': f'mock_refresh_{uuid.uuid4().hex}',
                'expiresIn': 3600
            }
        })

    async def send_otp(self, mobile: str) -> Dict[str, Any]:
        await self._pause()
        logger.info("Mock OTP sent (any 6 digit code is accepted)")
        return {'message': 'OTP sent successfully'}

    async def resend_otp(self, mobile: str) -> Dict[str, Any]:
        await self._pause()
        return {'message': 'OTP resent successfully', 'retryAfter': 30}

    async def verify_otp(self, mobile: str, otp: str) -> AuthResponse:
        await self._pause()
        return self._mock_auth_response(mobile, is_new_user=(otp == MOCK_OTP_NEW_USER))

    async def login_with_provider_token(self, id_token: str) -> AuthResponse:
        await self._pause()
        return self._mock_auth_response('', is_new_user=False)

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        await self._pause()
        return {'accessToken': f'mock_access_{uuid.uuid4().hex}', 'expiresIn': 3600}

    async def revoke(self, refresh_token: str) -> None:
        await self._pause()
