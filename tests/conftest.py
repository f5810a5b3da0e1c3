"""Shared fixtures for the Vyaapar client tests."""

import json
from contextlib import asynccontextmanager
from typing import Dict, Any

import pytest
from aiohttp import web, test_utils

from vyaapar_shared.models import AuthResponse, User
from vyaapar_client.auth.credential_store import (
    ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY, MemoryCredentialStore
)


def user_payload(user_id: str = "usr_001", is_new_user: bool = False, **overrides) -> Dict[str, Any]:
    payload = {
        'id': user_id,
        'mobile': '9876543210',
        'name': '' if is_new_user else 'Priya Patel',
        'isNewUser': is_new_user,
        'isBusinessSetup': not is_new_user,
        'plan': 'starter',
        'createdAt': '2024-01-15T10:30:00Z'
    }
    payload.update(overrides)
    return payload


def auth_payload(user_id: str = "usr_001", is_new_user: bool = False,
                 access_token: str = "access-1", refresh_token: str = "refresh-1") -> Dict[str, Any]:
    return {
        'user': user_payload(user_id, is_new_user),
        'tokens': {'accessToken': access_token, 'refreshToken': refresh_token, 'expiresIn': 3600}
    }


def auth_response(**kwargs) -> AuthResponse:
    return AuthResponse.from_api(auth_payload(**kwargs))


def stored_session_values(access_token: str = "access-1", refresh_token: str = "refresh-1",
                          user_id: str = "usr_001") -> Dict[str, str]:
    return {
        ACCESS_TOKEN_KEY: access_token,
        REFRESH_TOKEN_KEY: refresh_token,
        USER_KEY: json.dumps(User.from_api(user_payload(user_id)).to_dict())
    }


@asynccontextmanager
async def running_app(app: web.Application):
    """Serve an aiohttp application on a local port and yield its base URL."""
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url('')).rstrip('/')
    finally:
        await server.close()


@pytest.fixture
def memory_store():
    return MemoryCredentialStore()


@pytest.fixture
def logged_in_store():
    return MemoryCredentialStore(stored_session_values())


@pytest.fixture
def config_file(tmp_path):
    """Path of a configuration file that does not exist yet."""
    return str(tmp_path / 'client.conf')
