"""
Exception hierarchy for the Vyaapar client session core.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so that every failure reaching a caller has the same
normalized shape: ``{status_code, code, message}``.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the Vyaapar client."""

    # Authentication and session errors (1000-1099)
    AUTH_UNAUTHORIZED = "AUTH_1001"
    AUTH_SESSION_EXPIRED = "AUTH_1002"
    AUTH_REFRESH_FAILED = "AUTH_1003"

    # Network and communication errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_INVALID_RESPONSE = "NETWORK_2003"

    # Server errors (3000-3099)
    SERVER_REQUEST_REJECTED = "SERVER_3001"
    SERVER_NOT_FOUND = "SERVER_3002"
    SERVER_INTERNAL_ERROR = "SERVER_3003"

    # Validation errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"
    VALIDATION_MISSING_REQUIRED_FIELD = "VALIDATION_4002"
    VALIDATION_INVALID_FORMAT = "VALIDATION_4003"

    # Credential storage errors (5000-5099)
    STORAGE_UNAVAILABLE = "STORAGE_5001"
    STORAGE_CORRUPTED = "STORAGE_5002"

    # Configuration errors (8000-8099)
    CONFIG_INVALID_FORMAT = "CONFIG_8002"
    CONFIG_INVALID_VALUE = "CONFIG_8004"
    CONFIG_CLIENT_NOT_STARTED = "CONFIG_8005"

    # Internal errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    REFRESH_TOKEN = "refresh_token"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_SUPPORT = "contact_support"
    IGNORE = "ignore"


class VyaaparError(Exception):
    """
    Base exception class for all Vyaapar client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None,
        status_code: int = 0,
        code: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.status_code = status_code
        # Server supplied code wins over the local taxonomy code
        self.code = code or error_code.name
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def normalized(self) -> Dict[str, Any]:
        """Return the normalized ``{status_code, code, message}`` shape."""
        return {
            'status_code': self.status_code,
            'code': self.code,
            'message': self.user_message
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'status_code': self.status_code,
                'server_code': self.code,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class ValidationError(VyaaparError):
    """Malformed input rejected before any network call."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if field_name:
            context['field_name'] = field_name

        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.USER_INTERVENTION])
        code = kwargs.pop('code', 'VALIDATION_ERROR')

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            code=code,
            **kwargs
        )


class NetworkError(VyaaparError):
    """Connectivity or timeout failure. The session is left untouched."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        kwargs.setdefault('code', 'NETWORK_ERROR')
        kwargs.setdefault(
            'user_message',
            "Unable to reach the server. Check your connection and try again."
        )
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF],
            status_code=0,
            **kwargs
        )


class ServerError(VyaaparError):
    """Any non-success HTTP response, normalized and never auto-retried."""

    def __init__(self, message: str, status_code: int, error_code: Optional[ErrorCode] = None, **kwargs):
        if error_code is None:
            if status_code == 404:
                error_code = ErrorCode.SERVER_NOT_FOUND
            elif status_code >= 500:
                error_code = ErrorCode.SERVER_INTERNAL_ERROR
            else:
                error_code = ErrorCode.SERVER_REQUEST_REJECTED
        kwargs.setdefault('code', 'UNKNOWN')
        kwargs.setdefault('recovery_actions', [RecoveryAction.USER_INTERVENTION])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH if status_code >= 500 else ErrorSeverity.MEDIUM,
            status_code=status_code,
            **kwargs
        )


class UnauthorizedError(ServerError):
    """A 401 response handed back to the caller without a refresh attempt."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('code', 'UNAUTHORIZED')
        kwargs.setdefault('recovery_actions', [RecoveryAction.REFRESH_TOKEN])
        super().__init__(
            message=message,
            status_code=401,
            error_code=ErrorCode.AUTH_UNAUTHORIZED,
            **kwargs
        )


class AuthExpiredError(VyaaparError):
    """A 401 whose refresh attempt failed. Only a fresh login recovers."""

    def __init__(self, message: str = "Session expired", **kwargs):
        kwargs.setdefault('code', 'SESSION_EXPIRED')
        kwargs.setdefault('user_message', "Your session has expired. Please log in again.")
        error_code = kwargs.pop('error_code', ErrorCode.AUTH_SESSION_EXPIRED)
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.LOGIN_AGAIN],
            status_code=401,
            **kwargs
        )


class CredentialStoreError(VyaaparError):
    """Platform storage failure. Never propagated past the credential store."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_UNAVAILABLE, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.IGNORE],
            **kwargs
        )


class ConfigurationError(VyaaparError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
                 config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


class ClientNotStartedError(ConfigurationError):
    """Raised when a component is requested before the client was started."""

    def __init__(self, component: str):
        super().__init__(
            f"{component} accessed before VyaaparClient.start() completed",
            error_code=ErrorCode.CONFIG_CLIENT_NOT_STARTED,
            context={'component': component}
        )


def create_error_response(error: VyaaparError) -> Dict[str, Any]:
    """
    Create a standardized error response dictionary from an exception.

    Args:
        error: The VyaaparError exception

    Returns:
        Standardized error response dictionary
    """
    return error.to_dict()


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> VyaaparError:
    """
    Convert a generic exception to a structured VyaaparError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured VyaaparError
    """
    if isinstance(exception, VyaaparError):
        return exception

    if isinstance(exception, TimeoutError):
        return NetworkError(str(exception) or "Request timed out", ErrorCode.NETWORK_TIMEOUT,
                            context=context, cause=exception)
    if isinstance(exception, ConnectionError):
        return NetworkError(str(exception), ErrorCode.NETWORK_CONNECTION_FAILED,
                            context=context, cause=exception)
    if isinstance(exception, ValueError):
        return ValidationError(str(exception), context=context or {}, cause=exception)

    return VyaaparError(
        message=str(exception) or type(exception).__name__,
        error_code=default_error_code,
        context=context,
        cause=exception,
        user_message="Something went wrong. Please try again."
    )
