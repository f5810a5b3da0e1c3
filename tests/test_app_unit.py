#!/usr/bin/env python3
"""
Unit tests for the VyaaparClient composition root and the mock gateway.
"""

import pytest

from vyaapar_shared.exceptions import ClientNotStartedError
from vyaapar_shared.models import SessionStatus
from vyaapar_client.app import VyaaparClient
from vyaapar_client.config import ClientConfiguration
from vyaapar_client.auth.credential_store import ACCESS_TOKEN_KEY, MemoryCredentialStore
from vyaapar_client.auth.gateway import HttpAuthGateway, MockAuthGateway


@pytest.fixture
def config(config_file, monkeypatch):
    monkeypatch.delenv('VYAAPAR_USE_MOCK', raising=False)
    monkeypatch.delenv('VYAAPAR_STORAGE_BACKEND', raising=False)
    return ClientConfiguration(config_file)


class TestVyaaparClient:

    def test_components_unavailable_before_start(self, config):
        client = VyaaparClient(config, credential_store=MemoryCredentialStore())

        for component in ('session', 'http', 'gateway', 'refresh_coordinator', 'credential_store'):
            with pytest.raises(ClientNotStartedError) as exc_info:
                getattr(client, component)
            assert exc_info.value.context['component'] == component

    @pytest.mark.asyncio
    async def test_start_wires_components(self, config, logged_in_store):
        client = VyaaparClient(config, credential_store=logged_in_store)

        state = await client.start()

        assert state.status == SessionStatus.AUTHENTICATED
        assert client.credential_store is logged_in_store
        assert isinstance(client.gateway, HttpAuthGateway)
        assert client.refresh_coordinator.http_client is client.http
        assert client.refresh_coordinator.invalidate in client.session._session_reset_callbacks
        assert client.http.base_url == 'https://api.yourapp.in/v1'

        await client.close()
        assert client.is_started is False

    @pytest.mark.asyncio
    async def test_start_without_restore(self, config, logged_in_store):
        async with VyaaparClient(config, credential_store=logged_in_store) as client:
            pass

        client = VyaaparClient(config, credential_store=logged_in_store)
        state = await client.start(restore=False)
        assert state.status == SessionStatus.RESTORING
        await client.close()

    @pytest.mark.asyncio
    async def test_file_storage_backend_from_config(self, config, tmp_path):
        config.set_override('storage.backend', 'file')
        config.set_override('storage.file_path', str(tmp_path / 'credentials.enc'))

        async with VyaaparClient(config) as client:
            assert client.credential_store.backend_name == 'file'
            assert client.session.state.status == SessionStatus.UNAUTHENTICATED


class TestMockGateway:

    @pytest.mark.asyncio
    async def test_mock_login_flow(self, config, memory_store):
        config.set_override('auth.use_mock', True)
        config.set_override('auth.mock_delay', 0)

        async with VyaaparClient(config, credential_store=memory_store) as client:
            assert isinstance(client.gateway, MockAuthGateway)
            assert await client.session.send_otp("9876543210") is True
            outcome = await client.session.verify_otp("9876543210", "123456")

        assert outcome.user.id == "usr_mock_001"
        assert outcome.requires_profile_setup is False
        assert memory_store.get(ACCESS_TOKEN_KEY).startswith("mock_access_")

    @pytest.mark.asyncio
    async def test_mock_new_user_code(self):
        gateway = MockAuthGateway(delay=0)

        response = await gateway.verify_otp("9876543210", "999999")

        assert response.user.is_new_user is True
        assert response.user.mobile == "9876543210"

    @pytest.mark.asyncio
    async def test_mock_refresh_and_resend(self):
        gateway = MockAuthGateway(delay=0)

        refreshed = await gateway.refresh("mock_refresh")
        resent = await gateway.resend_otp("9876543210")

        assert refreshed['accessToken'].startswith("mock_access_")
        assert resent['retryAfter'] == 30
