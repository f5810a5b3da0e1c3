"""
Single-flight access token refresh for the Vyaapar client.

The coordinator sits on the HTTP client's 401 path. It guarantees that at most
one refresh call is in flight, parks every request that hits a 401 while the
refresh runs, and replays those requests once the outcome is known.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List, Set, Callable, Any, TYPE_CHECKING

from vyaapar_shared.exceptions import (
    AuthExpiredError, CredentialStoreError, ErrorCode, UnauthorizedError, VyaaparError
)
from vyaapar_shared.interfaces import ICredentialStore, IAuthGateway
from vyaapar_shared.logging_config import AuditLogger
from .credential_store import (
    ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRES_AT_KEY, clear_session
)
from .tokens import token_expiry

if TYPE_CHECKING:
    from vyaapar_client.http_client import HttpClient, ApiRequest

logger = logging.getLogger(__name__)


@dataclass
class PendingWaiter:
    """A caller parked until the in-flight refresh settles."""
    future: asyncio.Future


class RefreshCoordinator:
    """
    Coordinates access token refresh across concurrent requests.

    The refresh itself runs as its own task so that cancelling the request
    that started it never leaves waiters parked or the flag stuck.
    """

    def __init__(
        self,
        http_client: 'HttpClient',
        credential_store: ICredentialStore,
        gateway: IAuthGateway,
        refresh_timeout: float = 15.0,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.http_client = http_client
        self.credential_store = credential_store
        self.gateway = gateway
        self.refresh_timeout = refresh_timeout
        self.audit_logger = audit_logger or AuditLogger()

        self._is_refreshing = False
        self._waiters: List[PendingWaiter] = []
        self._refresh_task: Optional[asyncio.Task] = None
        # Bumped whenever the stored session is torn down or replaced
        self._generation = 0
        self._abandoned_tasks: Set[asyncio.Task] = set()
        self._session_expired_callbacks: List[Callable[[AuthExpiredError], None]] = []

    @property
    def is_refreshing(self) -> bool:
        return self._is_refreshing

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate(self) -> None:
        """
        Mark the stored session as replaced.

        A refresh already in flight finishes without touching the store or
        firing session-expired callbacks, and its callers are rejected.
        """
        self._generation += 1
        if not self._is_refreshing:
            return

        stale_task = self._refresh_task
        if stale_task is not None and not stale_task.done():
            self._abandoned_tasks.add(stale_task)
            stale_task.add_done_callback(self._abandoned_tasks.discard)

        waiters = self._settle(AuthExpiredError(
            "Session was replaced during token refresh",
            error_code=ErrorCode.AUTH_REFRESH_FAILED
        ))
        logger.info(f"Session changed during token refresh ({waiters} queued requests rejected)")

    def add_session_expired_callback(self, callback: Callable[[AuthExpiredError], None]) -> None:
        """Register a callback fired once per failed refresh."""
        self._session_expired_callbacks.append(callback)

    async def handle_unauthorized(self, request: 'ApiRequest', error: UnauthorizedError) -> Any:
        """
        Recover a request that received a 401.

        Returns:
            The replayed request's response

        Raises:
            UnauthorizedError: If the request was already replayed once
            AuthExpiredError: If the refresh failed
        """
        if request.retried:
            logger.warning(f"Replayed request rejected again: {request.method} {request.path}")
            raise error

        if self._is_refreshing:
            waiter = PendingWaiter(asyncio.get_running_loop().create_future())
            self._waiters.append(waiter)
            logger.debug(f"Queued {request.method} {request.path} behind refresh ({len(self._waiters)} waiting)")
            try:
                await waiter.future
            except AuthExpiredError as failure:
                raise self._for_caller(failure) from failure
            request.retried = True
            return await self.http_client.execute(request)

        current_token = self.credential_store.get(ACCESS_TOKEN_KEY)
        if current_token and request.sent_token and current_token != request.sent_token:
            # Token was refreshed after this request went out
            request.retried = True
            return await self.http_client.execute(request)

        # Check and set with no suspension point in between
        self._is_refreshing = True
        request.retried = True
        self._refresh_task = asyncio.ensure_future(self._run_refresh(self._generation))

        failure = await asyncio.shield(self._refresh_task)
        if failure is not None:
            raise self._for_caller(failure) from failure
        return await self.http_client.execute(request)

    async def _run_refresh(self, generation: int) -> Optional[AuthExpiredError]:
        """Run one refresh cycle and settle every waiter. Returns the failure, if any."""
        try:
            await self._refresh_access_token(generation)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._settle(AuthExpiredError("Token refresh was cancelled"))
            raise
        except Exception as e:
            failure = self._as_auth_expired(e)
            if generation != self._generation:
                # Waiters were already released by invalidate()
                logger.info(f"Discarded token refresh outcome for a replaced session: {e}")
                return failure

            waiters = self._settle(failure)
            clear_session(self.credential_store)
            logger.warning(f"Token refresh failed, session cleared: {e}")
            self.audit_logger.log_token_refresh(False, waiters=waiters, failure_reason=str(e))
            self._notify_session_expired(failure)
            return failure

        waiters = self._settle(None)
        logger.info(f"Access token refreshed ({waiters} queued requests released)")
        self.audit_logger.log_token_refresh(True, waiters=waiters)
        return None

    async def _refresh_access_token(self, generation: int) -> None:
        refresh_token = self.credential_store.get(REFRESH_TOKEN_KEY)
        if not refresh_token:
            raise AuthExpiredError("No refresh token available", error_code=ErrorCode.AUTH_REFRESH_FAILED)

        try:
            data = await asyncio.wait_for(
                self.gateway.refresh(refresh_token),
                timeout=self.refresh_timeout
            )
        except asyncio.TimeoutError as e:
            raise AuthExpiredError(
                f"Token refresh timed out after {self.refresh_timeout}s",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                cause=e
            )

        if generation != self._generation:
            raise AuthExpiredError(
                "Session was replaced during token refresh",
                error_code=ErrorCode.AUTH_REFRESH_FAILED
            )

        access_token = data.get('accessToken') if isinstance(data, dict) else None
        if not access_token:
            raise AuthExpiredError(
                "Refresh response did not contain an access token",
                error_code=ErrorCode.AUTH_REFRESH_FAILED
            )

        if not self.credential_store.set(ACCESS_TOKEN_KEY, access_token):
            raise CredentialStoreError("Could not persist refreshed access token")

        rotated = data.get('refreshToken')
        if rotated and not self.credential_store.set(REFRESH_TOKEN_KEY, rotated):
            raise CredentialStoreError("Could not persist rotated refresh token")

        expires_in = data.get('expiresIn')
        if expires_in:
            expires_at = datetime.now() + timedelta(seconds=int(expires_in))
        else:
            expires_at = token_expiry(access_token)

        if expires_at:
            self.credential_store.set(EXPIRES_AT_KEY, expires_at.isoformat())
        else:
            self.credential_store.delete(EXPIRES_AT_KEY)

    def _settle(self, failure: Optional[AuthExpiredError]) -> int:
        """Resolve or reject every waiter and clear the flag. Returns the waiter count."""
        waiters, self._waiters = self._waiters, []
        self._is_refreshing = False
        self._refresh_task = None

        for waiter in waiters:
            if waiter.future.done():
                continue
            if failure is None:
                waiter.future.set_result(None)
            else:
                waiter.future.set_exception(failure)
        return len(waiters)

    def _for_caller(self, failure: AuthExpiredError) -> AuthExpiredError:
        """A separate error instance for each rejected caller."""
        return AuthExpiredError(
            failure.message,
            error_code=failure.error_code,
            code=failure.code,
            user_message=failure.user_message,
            cause=failure.cause or failure
        )

    def _as_auth_expired(self, error: Exception) -> AuthExpiredError:
        if isinstance(error, AuthExpiredError):
            return error
        reason = error.message if isinstance(error, VyaaparError) else str(error)
        return AuthExpiredError(
            f"Token refresh failed: {reason}",
            error_code=ErrorCode.AUTH_REFRESH_FAILED,
            cause=error
        )

    def _notify_session_expired(self, error: AuthExpiredError) -> None:
        for callback in self._session_expired_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Session expired callback failed: {e}")

    async def close(self) -> None:
        """Cancel in-flight refreshes, rejecting their waiters."""
        tasks = list(self._abandoned_tasks)
        if self._refresh_task is not None:
            tasks.append(self._refresh_task)

        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._abandoned_tasks.clear()
