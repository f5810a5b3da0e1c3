"""
Session lifecycle management for the Vyaapar client.

This module owns the externally observed authentication state: startup
restore, OTP and provider-token login, logout and forced logout after a
failed token refresh.
"""

import asyncio
import logging
from typing import Optional, List, Callable, Set, Awaitable, Dict, Any

from vyaapar_shared.exceptions import (
    AuthExpiredError, ValidationError, VyaaparError, handle_exception
)
from vyaapar_shared.interfaces import ICredentialStore, IAuthGateway
from vyaapar_shared.logging_config import AuditLogger, log_structured_error
from vyaapar_shared.models import (
    AuthResponse, ErrorCleared, ErrorRaised, LoggedOut, LoginOutcome, LoginSucceeded,
    OperationStarted, OtpRequested, RestoreFailed, Session, SessionAction, SessionExpired,
    SessionRestored, SessionState, User, reduce_state
)
from .credential_store import REFRESH_TOKEN_KEY, clear_session, load_session, save_session
from .validators import normalize_mobile, validate_otp, validate_provider_token

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState], None]


class SessionManager:
    """
    Authentication state machine.

    Every state change goes through ``_dispatch`` and the pure
    ``reduce_state`` function. Writes to the credential store are synchronous,
    so persisting a session and dispatching its state happen in one step of
    the event loop and observers never see one without the other.
    """

    def __init__(
        self,
        credential_store: ICredentialStore,
        gateway: IAuthGateway,
        restore_timeout: float = 5.0,
        revoke_timeout: float = 10.0,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.credential_store = credential_store
        self.gateway = gateway
        self.restore_timeout = restore_timeout
        self.revoke_timeout = revoke_timeout
        self.audit_logger = audit_logger or AuditLogger()

        self._state = SessionState()
        self._listeners: List[StateListener] = []
        self._session_reset_callbacks: List[Callable[[], None]] = []

        # Bumped by logout and session expiry; logins started earlier are dropped
        self._teardown_epoch = 0
        # Bumped by successful logins; a restore racing a login is dropped
        self._login_epoch = 0

        self._background_tasks: Set[asyncio.Task] = set()

        logger.info("Session manager initialized")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """
        Subscribe to state changes.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def add_session_reset_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback fired before the stored session is cleared or replaced."""
        self._session_reset_callbacks.append(callback)

    def _notify_session_reset(self) -> None:
        for callback in list(self._session_reset_callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in session reset callback: {e}")

    def _dispatch(self, action: SessionAction) -> None:
        previous = self._state
        self._state = reduce_state(previous, action)
        if self._state == previous:
            return

        if self._state.status != previous.status:
            logger.debug(f"Session state: {previous.status.value} -> {self._state.status.value}")

        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Error in session state listener: {e}")

    def _fail(self, error: Exception, context: Dict[str, Any]) -> VyaaparError:
        structured = handle_exception(error, context=context)
        level = logging.INFO if isinstance(structured, ValidationError) else logging.WARNING
        log_structured_error(logger, structured, level=level)
        self._dispatch(ErrorRaised(structured.user_message))
        return structured

    async def restore_session(self) -> SessionState:
        """
        Restore a persisted session without any network call.

        The credential store is read in a worker thread under a timeout, so a
        stalled keyring never leaves the manager in RESTORING.
        """
        login_epoch = self._login_epoch
        teardown_epoch = self._teardown_epoch

        session: Optional[Session] = None
        try:
            session = await asyncio.wait_for(
                asyncio.to_thread(load_session, self.credential_store),
                timeout=self.restore_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Session restore timed out after {self.restore_timeout}s")
        except Exception as e:
            logger.error(f"Session restore failed: {e}")

        if login_epoch != self._login_epoch or teardown_epoch != self._teardown_epoch:
            logger.debug("Discarding restore result superseded by a newer transition")
            return self._state

        if session is None:
            logger.info("No stored session found")
            self._dispatch(RestoreFailed())
            return self._state

        self._dispatch(SessionRestored(session.user))
        logger.info(f"Session restored for user {session.user.id}")
        self.audit_logger.log_session_restored(session.user.id)
        return self._state

    async def send_otp(self, identity: str) -> bool:
        """
        Ask the backend to deliver an OTP.

        Returns:
            True when the OTP was sent and the state is OTP_PENDING
        """
        if self._state.is_authenticated:
            self._dispatch(ErrorRaised("You are already logged in."))
            return False

        try:
            mobile = normalize_mobile(identity)
        except ValidationError as e:
            self._fail(e, {'operation': 'send_otp'})
            return False

        self._dispatch(OperationStarted())
        try:
            await self.gateway.send_otp(mobile)
        except Exception as e:
            error = self._fail(e, {'operation': 'send_otp'})
            self.audit_logger.log_otp_requested(mobile, success=False, failure_reason=error.code)
            return False

        self._dispatch(OtpRequested(mobile))
        self.audit_logger.log_otp_requested(mobile)
        return True

    async def resend_otp(self, identity: Optional[str] = None) -> Optional[int]:
        """
        Request a fresh OTP for the pending (or given) mobile number.

        Returns:
            Seconds the caller must wait before resending again, or None on failure
        """
        if self._state.is_authenticated:
            self._dispatch(ErrorRaised("You are already logged in."))
            return None

        try:
            mobile = normalize_mobile(identity or self._state.pending_identity or '')
        except ValidationError as e:
            self._fail(e, {'operation': 'resend_otp'})
            return None

        self._dispatch(OperationStarted())
        try:
            data = await self.gateway.resend_otp(mobile)
        except Exception as e:
            self._fail(e, {'operation': 'resend_otp'})
            return None

        self._dispatch(OtpRequested(mobile))
        self.audit_logger.log_otp_requested(mobile)
        retry_after = data.get('retryAfter') if isinstance(data, dict) else None
        try:
            return max(int(retry_after or 0), 0)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed retryAfter from server: {retry_after!r}")
            return 0

    async def verify_otp(self, identity: str, code: str) -> Optional[LoginOutcome]:
        """
        Exchange an OTP for a session.

        Returns:
            LoginOutcome on success, None on failure with ``error`` set
        """
        try:
            mobile = normalize_mobile(identity)
            otp = validate_otp(code)
        except ValidationError as e:
            self._fail(e, {'operation': 'verify_otp'})
            return None

        return await self._login('otp', lambda: self.gateway.verify_otp(mobile, otp))

    async def login_with_provider_token(self, id_token: str) -> Optional[LoginOutcome]:
        """Exchange an external identity provider token for a session."""
        try:
            token = validate_provider_token(id_token)
        except ValidationError as e:
            self._fail(e, {'operation': 'login_with_provider_token'})
            return None

        return await self._login('provider', lambda: self.gateway.login_with_provider_token(token))

    async def _login(self, method: str, call: Callable[[], Awaitable[AuthResponse]]) -> Optional[LoginOutcome]:
        teardown_epoch = self._teardown_epoch
        self._dispatch(OperationStarted())

        try:
            response = await call()
        except Exception as e:
            if teardown_epoch != self._teardown_epoch:
                logger.debug(f"Ignoring {method} login failure after logout")
                return None
            error = self._fail(e, {'operation': f'login_{method}'})
            self.audit_logger.log_login(method, success=False, failure_reason=error.code)
            return None

        if teardown_epoch != self._teardown_epoch:
            logger.info(f"Discarding {method} login that completed after logout")
            return None

        session = Session.from_auth_response(response)
        self._notify_session_reset()
        if not save_session(self.credential_store, session):
            clear_session(self.credential_store)
            logger.error("Failed to persist session after login")
            self._dispatch(ErrorRaised("Could not save your session. Please try again."))
            self.audit_logger.log_login(method, user_id=session.user.id, success=False,
                                        failure_reason='STORAGE_FAILED')
            return None

        self._login_epoch += 1
        self._dispatch(LoginSucceeded(session.user))
        logger.info(f"User {session.user.id} logged in via {method}")
        self.audit_logger.log_login(method, user_id=session.user.id)
        return LoginOutcome(session.user)

    async def logout(self) -> None:
        """
        Log out locally and revoke the refresh token in the background.

        Local state is cleared before this coroutine first suspends; the
        revoke outcome never affects it.
        """
        user_id = self._state.user.id if self._state.user else None
        refresh_token = self.credential_store.get(REFRESH_TOKEN_KEY)

        self._teardown_epoch += 1
        self._notify_session_reset()
        if not clear_session(self.credential_store):
            logger.warning("Some credentials could not be removed during logout")
        self._dispatch(LoggedOut())
        logger.info("User logged out")
        self.audit_logger.log_logout(user_id)

        if refresh_token:
            task = asyncio.ensure_future(self._revoke(refresh_token))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

    async def _revoke(self, refresh_token: str) -> None:
        try:
            await asyncio.wait_for(self.gateway.revoke(refresh_token), timeout=self.revoke_timeout)
            logger.debug("Refresh token revoked on server")
        except Exception as e:
            logger.warning(f"Server side logout failed (ignored): {e}")

    def handle_session_expired(self, error: AuthExpiredError) -> None:
        """Forced logout after the refresh coordinator gave up."""
        user_id = self._state.user.id if self._state.user else None
        self._teardown_epoch += 1
        self._dispatch(SessionExpired(error.user_message))
        logger.warning("Session expired, user must log in again")
        self.audit_logger.log_session_expired(user_id)

    def clear_error(self) -> None:
        self._dispatch(ErrorCleared())

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background_tasks)

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending revoke calls to finish."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background work such as pending revoke calls."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()
