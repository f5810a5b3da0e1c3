"""
Core data models for the Vyaapar client session core.

This module defines the user, token and session structures exchanged with the
authentication endpoints and persisted in the credential store, plus the
observable session state and the actions that drive it.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Union
from enum import Enum


class Plan(Enum):
    """Subscription plan attached to a user."""
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SessionStatus(Enum):
    """Externally observed authentication status."""
    RESTORING = "restoring"
    UNAUTHENTICATED = "unauthenticated"
    OTP_PENDING = "otp_pending"
    AUTHENTICATED = "authenticated"


@dataclass
class User:
    """Authenticated user profile."""
    id: str
    mobile: str
    name: str = ""
    is_new_user: bool = False
    is_business_setup: bool = False
    plan: Plan = Plan.STARTER
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("User ID cannot be empty")
        if isinstance(self.plan, str):
            self.plan = Plan(self.plan)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'User':
        """Build a user from the camelCase payload returned by the API."""
        created_at = data.get('createdAt')
        return cls(
            id=data['id'],
            mobile=data.get('mobile', ''),
            name=data.get('name', ''),
            is_new_user=bool(data.get('isNewUser', False)),
            is_business_setup=bool(data.get('isBusinessSetup', False)),
            plan=data.get('plan') or Plan.STARTER,
            created_at=datetime.fromisoformat(created_at.replace('Z', '+00:00')) if created_at else None
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize in the same camelCase shape the API uses."""
        return {
            'id': self.id,
            'mobile': self.mobile,
            'name': self.name,
            'isNewUser': self.is_new_user,
            'isBusinessSetup': self.is_business_setup,
            'plan': self.plan.value,
            'createdAt': self.created_at.isoformat() if self.created_at else None
        }


@dataclass
class AuthTokens:
    """Token pair issued by the verification and provider login endpoints."""
    access_token: str
    refresh_token: str
    expires_in: int = 3600

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Access token cannot be empty")
        if not self.refresh_token:
            raise ValueError("Refresh token cannot be empty")

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'AuthTokens':
        return cls(
            access_token=data['accessToken'],
            refresh_token=data['refreshToken'],
            expires_in=int(data.get('expiresIn', 3600))
        )


@dataclass
class AuthResponse:
    """Response of the verification and provider login endpoints."""
    user: User
    tokens: AuthTokens

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'AuthResponse':
        return cls(
            user=User.from_api(data['user']),
            tokens=AuthTokens.from_api(data['tokens'])
        )


@dataclass
class Session:
    """
    One authenticated identity: user profile plus token pair.

    A session is either fully present or fully absent; construction refuses
    a user without tokens and tokens without a user.
    """
    user: User
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime] = None

    def __post_init__(self):
        if self.user is None:
            raise ValueError("Session requires a user")
        if not self.access_token or not self.refresh_token:
            raise ValueError("Session requires both access and refresh tokens")

    @classmethod
    def from_auth_response(cls, response: AuthResponse, now: Optional[datetime] = None) -> 'Session':
        issued_at = now or datetime.now()
        return cls(
            user=response.user,
            access_token=response.tokens.access_token,
            refresh_token=response.tokens.refresh_token,
            expires_at=issued_at + timedelta(seconds=response.tokens.expires_in)
        )

    def is_access_token_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.expires_at:
            return False
        return (now or datetime.now()) >= self.expires_at


@dataclass(frozen=True)
class SessionState:
    """Snapshot observed by every consumer of the session manager."""
    status: SessionStatus = SessionStatus.RESTORING
    user: Optional[User] = None
    is_loading: bool = True
    error: Optional[str] = None
    pending_identity: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED and self.user is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'user': self.user.to_dict() if self.user else None,
            'is_authenticated': self.is_authenticated,
            'is_loading': self.is_loading,
            'error': self.error
        }


@dataclass(frozen=True)
class LoginOutcome:
    """Result handed to the caller of a successful login."""
    user: User

    @property
    def is_new_user(self) -> bool:
        return self.user.is_new_user

    @property
    def requires_profile_setup(self) -> bool:
        """True when the caller should route to business profile setup."""
        return self.user.is_new_user


# Session state actions, one per transition event

@dataclass(frozen=True)
class SessionRestored:
    user: User


@dataclass(frozen=True)
class RestoreFailed:
    pass


@dataclass(frozen=True)
class OperationStarted:
    pass


@dataclass(frozen=True)
class OtpRequested:
    identity: str


@dataclass(frozen=True)
class LoginSucceeded:
    user: User


@dataclass(frozen=True)
class LoggedOut:
    pass


@dataclass(frozen=True)
class SessionExpired:
    message: str = "Your session has expired. Please log in again."


@dataclass(frozen=True)
class ErrorRaised:
    message: str


@dataclass(frozen=True)
class ErrorCleared:
    pass


SessionAction = Union[
    SessionRestored, RestoreFailed, OperationStarted, OtpRequested,
    LoginSucceeded, LoggedOut, SessionExpired, ErrorRaised, ErrorCleared
]


def reduce_state(state: SessionState, action: SessionAction) -> SessionState:
    """
    Pure transition function for the session state machine.

    Unknown actions return the state unchanged.
    """
    if isinstance(action, SessionRestored):
        return SessionState(
            status=SessionStatus.AUTHENTICATED,
            user=action.user,
            is_loading=False,
            error=state.error
        )

    if isinstance(action, RestoreFailed):
        # A restore that fails after another transition already won is a no-op
        if state.status != SessionStatus.RESTORING:
            return replace(state, is_loading=False)
        return SessionState(status=SessionStatus.UNAUTHENTICATED, is_loading=False, error=state.error)

    if isinstance(action, OperationStarted):
        return replace(state, is_loading=True, error=None)

    if isinstance(action, OtpRequested):
        return SessionState(
            status=SessionStatus.OTP_PENDING,
            is_loading=False,
            pending_identity=action.identity
        )

    if isinstance(action, LoginSucceeded):
        return SessionState(status=SessionStatus.AUTHENTICATED, user=action.user, is_loading=False)

    if isinstance(action, LoggedOut):
        return SessionState(status=SessionStatus.UNAUTHENTICATED, is_loading=False)

    if isinstance(action, SessionExpired):
        return SessionState(status=SessionStatus.UNAUTHENTICATED, is_loading=False, error=action.message)

    if isinstance(action, ErrorRaised):
        return replace(state, is_loading=False, error=action.message)

    if isinstance(action, ErrorCleared):
        return replace(state, error=None)

    return state
