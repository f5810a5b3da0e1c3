"""
Composition root for the Vyaapar client.

``VyaaparClient`` builds the credential store, HTTP client, auth gateway,
refresh coordinator and session manager once, wires them together and owns
their shutdown.
"""

import logging
from typing import Optional

from vyaapar_shared.exceptions import ClientNotStartedError
from vyaapar_shared.interfaces import ICredentialStore, IAuthGateway
from vyaapar_shared.logging_config import AuditLogger
from vyaapar_shared.models import SessionState

from vyaapar_client.config import ClientConfiguration
from vyaapar_client.http_client import HttpClient
from vyaapar_client.auth.credential_store import SecureCredentialStore
from vyaapar_client.auth.gateway import HttpAuthGateway, MockAuthGateway
from vyaapar_client.auth.refresh_coordinator import RefreshCoordinator
from vyaapar_client.auth.session_manager import SessionManager

logger = logging.getLogger(__name__)


class VyaaparClient:
    """
    Owns one instance of every session core component.

    Components are created by ``start()``; reading them earlier raises
    ``ClientNotStartedError``. Collaborators may be injected for tests.
    """

    def __init__(
        self,
        config: Optional[ClientConfiguration] = None,
        credential_store: Optional[ICredentialStore] = None,
        gateway: Optional[IAuthGateway] = None
    ):
        self.config = config or ClientConfiguration()
        self._injected_store = credential_store
        self._injected_gateway = gateway

        self._store: Optional[ICredentialStore] = None
        self._http: Optional[HttpClient] = None
        self._gateway: Optional[IAuthGateway] = None
        self._coordinator: Optional[RefreshCoordinator] = None
        self._session: Optional[SessionManager] = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_started(self) -> bool:
        return self._session is not None

    @property
    def credential_store(self) -> ICredentialStore:
        if self._store is None:
            raise ClientNotStartedError("credential_store")
        return self._store

    @property
    def http(self) -> HttpClient:
        if self._http is None:
            raise ClientNotStartedError("http")
        return self._http

    @property
    def gateway(self) -> IAuthGateway:
        if self._gateway is None:
            raise ClientNotStartedError("gateway")
        return self._gateway

    @property
    def refresh_coordinator(self) -> RefreshCoordinator:
        if self._coordinator is None:
            raise ClientNotStartedError("refresh_coordinator")
        return self._coordinator

    @property
    def session(self) -> SessionManager:
        if self._session is None:
            raise ClientNotStartedError("session")
        return self._session

    def _build(self) -> None:
        config = self.config
        audit_logger = AuditLogger()

        store = self._injected_store or SecureCredentialStore(
            service_name=config.get_storage_service_name(),
            storage_path=config.get_storage_file_path(),
            backend=config.get_storage_backend()
        )

        http = HttpClient(
            base_url=config.get_api_base_url(),
            credential_store=store,
            timeout=config.get_api_timeout(),
            app_version=config.get_app_version(),
            platform=config.get_platform()
        )

        if self._injected_gateway is not None:
            gateway = self._injected_gateway
        elif config.use_mock_gateway():
            logger.warning("Using mock authentication gateway")
            gateway = MockAuthGateway(delay=config.get_mock_delay())
        else:
            gateway = HttpAuthGateway(http)

        coordinator = RefreshCoordinator(
            http_client=http,
            credential_store=store,
            gateway=gateway,
            refresh_timeout=config.get_refresh_timeout(),
            audit_logger=audit_logger
        )
        http.attach_refresh_coordinator(coordinator)

        session = SessionManager(
            credential_store=store,
            gateway=gateway,
            restore_timeout=config.get_restore_timeout(),
            revoke_timeout=config.get_revoke_timeout(),
            audit_logger=audit_logger
        )
        coordinator.add_session_expired_callback(session.handle_session_expired)
        session.add_session_reset_callback(coordinator.invalidate)

        self._store = store
        self._http = http
        self._gateway = gateway
        self._coordinator = coordinator
        self._session = session

    async def start(self, restore: bool = True) -> SessionState:
        """
        Build all components and optionally restore the persisted session.

        Calling start on a started client only re-runs the restore.
        """
        if not self.is_started:
            self._build()
            logger.info(f"Vyaapar client started (API: {self.config.get_api_base_url()})")

        if restore:
            return await self.session.restore_session()
        return self.session.state

    async def close(self) -> None:
        """Stop background work and release the HTTP session."""
        if self._session is not None:
            await self._session.close()
        if self._coordinator is not None:
            await self._coordinator.close()
        if self._http is not None:
            await self._http.close()

        self._store = None
        self._http = None
        self._gateway = None
        self._coordinator = None
        self._session = None
        logger.debug("Vyaapar client closed")
