"""
Core interfaces for the Vyaapar client session core.

This module defines the abstract interfaces that collaborators must implement
so that the session manager and HTTP client never branch on platform or on
whether a real or mock backend is in use.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

from .models import AuthResponse


class ICredentialStore(ABC):
    """
    Durable key-value persistence for tokens and the user profile.

    Implementations must never raise from these methods: failures are logged
    and reported as ``None`` (reads) or ``False`` (writes).
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None when absent or unreadable."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> bool:
        """Store a value. Returns True on success."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a value. Returns True when the key is gone afterwards."""
        pass


class IAuthGateway(ABC):
    """Interface for the external authentication endpoints."""

    @abstractmethod
    async def send_otp(self, mobile: str) -> Dict[str, Any]:
        """Start a login by delivering an OTP to the given mobile number."""
        pass

    @abstractmethod
    async def resend_otp(self, mobile: str) -> Dict[str, Any]:
        """Deliver a fresh OTP. The backend rate-limits this call."""
        pass

    @abstractmethod
    async def verify_otp(self, mobile: str, otp: str) -> AuthResponse:
        """Exchange an OTP for a user profile and token pair."""
        pass

    @abstractmethod
    async def login_with_provider_token(self, id_token: str) -> AuthResponse:
        """Exchange an external identity provider token for a session."""
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new access token."""
        pass

    @abstractmethod
    async def revoke(self, refresh_token: str) -> None:
        """Best-effort server side revocation of a refresh token."""
        pass
