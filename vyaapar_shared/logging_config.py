"""
Logging configuration for the Vyaapar client.

This module provides structured logging with an authentication audit trail
and configurable output formats.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from vyaapar_shared.exceptions import VyaaparError


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration."""
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Types of events that should be audited."""
    OTP_REQUESTED = "otp_requested"
    LOGIN = "login"
    SESSION_RESTORED = "session_restored"
    TOKEN_REFRESH = "token_refresh"
    SESSION_EXPIRED = "session_expired"
    LOGOUT = "logout"
    ERROR_EVENT = "error_event"


_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'error_info', 'audit_info', 'taskName'
}


def mask_token(token: Optional[str], visible: int = 4) -> str:
    """Render a token safe for logs, keeping only its last characters."""
    if not token:
        return "<none>"
    if len(token) <= visible:
        return "*" * len(token)
    return f"{'*' * 6}{token[-visible:]}"


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured JSON logs with consistent fields.
    """

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': os.getpid()
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        error = getattr(record, 'error_info', None)
        if isinstance(error, VyaaparError):
            log_entry['error'] = {
                'code': error.error_code.value,
                'status_code': error.status_code,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions],
                'user_message': error.user_message
            }

        if hasattr(record, 'audit_info'):
            log_entry['audit'] = record.audit_info

        if self.include_extra_fields:
            extra_fields = {
                key: value for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_FIELDS
            }
            if extra_fields:
                log_entry['extra'] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """
    Detailed human-readable formatter.
    """

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-28s | %(funcName)-20s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        error = getattr(record, 'error_info', None)
        if isinstance(error, VyaaparError):
            formatted += f"\n  Error Code: {error.error_code.value}"
            formatted += f"\n  Status: {error.status_code} ({error.code})"
            if error.context:
                formatted += f"\n  Context: {json.dumps(error.context, indent=2, default=str)}"

        if hasattr(record, 'audit_info'):
            formatted += f"\n  Audit: {json.dumps(record.audit_info, indent=2, default=str)}"

        return formatted


class AuditLogger:
    """
    Logger for session lifecycle events.

    Records who logged in, when sessions were restored, refreshed, expired or
    ended. Token values are never written; only user identifiers and results.
    """

    def __init__(self, logger_name: str = "audit"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        user_id: Optional[str] = None,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an audit event with structured information.

        Args:
            event_type: Type of audit event
            message: Human-readable message
            user_id: ID of the user involved
            result: Result of the operation (success, failure, etc.)
            additional_context: Additional context information
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'user_id': user_id,
            'result': result,
            'context': additional_context or {}
        }
        audit_info = {k: v for k, v in audit_info.items() if v is not None}

        self.logger.info(message, extra={'audit_info': audit_info})

    def log_otp_requested(self, mobile: str, success: bool = True, failure_reason: Optional[str] = None):
        context = {'mobile': mask_token(mobile)}
        if failure_reason:
            context['failure_reason'] = failure_reason
        self.log_event(
            event_type=AuditEventType.OTP_REQUESTED,
            message=f"OTP request {'accepted' if success else 'failed'}",
            result="success" if success else "failure",
            additional_context=context
        )

    def log_login(
        self,
        method: str,
        user_id: Optional[str] = None,
        success: bool = True,
        failure_reason: Optional[str] = None
    ):
        context = {'method': method}
        if failure_reason:
            context['failure_reason'] = failure_reason
        self.log_event(
            event_type=AuditEventType.LOGIN,
            message=f"Login via {method} {'successful' if success else 'failed'}",
            user_id=user_id,
            result="success" if success else "failure",
            additional_context=context
        )

    def log_session_restored(self, user_id: str):
        self.log_event(
            event_type=AuditEventType.SESSION_RESTORED,
            message="Session restored from credential store",
            user_id=user_id,
            result="success"
        )

    def log_token_refresh(self, success: bool, waiters: int = 0, failure_reason: Optional[str] = None):
        context: Dict[str, Any] = {'waiters': waiters}
        if failure_reason:
            context['failure_reason'] = failure_reason
        self.log_event(
            event_type=AuditEventType.TOKEN_REFRESH,
            message=f"Access token refresh {'successful' if success else 'failed'}",
            result="success" if success else "failure",
            additional_context=context
        )

    def log_session_expired(self, user_id: Optional[str] = None):
        self.log_event(
            event_type=AuditEventType.SESSION_EXPIRED,
            message="Session expired and was cleared",
            user_id=user_id,
            result="logged_out"
        )

    def log_logout(self, user_id: Optional[str] = None):
        self.log_event(
            event_type=AuditEventType.LOGOUT,
            message="User logged out",
            user_id=user_id,
            result="success"
        )

    def log_error(self, error: VyaaparError, user_id: Optional[str] = None):
        self.log_event(
            event_type=AuditEventType.ERROR_EVENT,
            message=f"Error occurred: {error.message}",
            user_id=user_id,
            result="error",
            additional_context={
                'error_code': error.error_code.value,
                'status_code': error.status_code,
                'severity': error.severity.value
            }
        )


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    enable_console: bool = True,
    enable_audit: bool = True,
    audit_file: Optional[str] = None
) -> Dict[str, logging.Logger]:
    """
    Set up logging for the client.

    Args:
        log_level: Minimum log level to capture
        log_format: Format for log output
        log_file: Path to main log file (optional)
        max_file_size: Maximum size of log files before rotation
        backup_count: Number of backup files to keep
        enable_console: Whether to enable console logging
        enable_audit: Whether to enable audit logging
        audit_file: Path to audit log file (optional)

    Returns:
        Dictionary of configured loggers
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.value))

    if log_format == LogFormat.JSON:
        formatter = StructuredFormatter()
    elif log_format == LogFormat.DETAILED:
        formatter = DetailedFormatter()
    else:
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handlers = []

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for handler in handlers:
        root_logger.addHandler(handler)

    # aiohttp access noise stays out of client logs unless debugging
    if log_level != LogLevel.DEBUG:
        logging.getLogger('aiohttp').setLevel(logging.WARNING)

    loggers = {
        'root': root_logger,
        'session': logging.getLogger('vyaapar_client.auth'),
        'http': logging.getLogger('vyaapar_client.http_client')
    }

    if enable_audit:
        audit_logger = logging.getLogger('audit')
        audit_logger.setLevel(logging.INFO)
        for handler in audit_logger.handlers[:]:
            audit_logger.removeHandler(handler)

        if audit_file:
            audit_path = Path(audit_file)
            audit_path.parent.mkdir(parents=True, exist_ok=True)

            audit_handler = logging.handlers.RotatingFileHandler(
                audit_file,
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            audit_handler.setFormatter(StructuredFormatter())
            audit_logger.addHandler(audit_handler)
            audit_logger.propagate = False

        loggers['audit'] = audit_logger

    return loggers


def log_structured_error(
    logger: logging.Logger,
    error: VyaaparError,
    user_id: Optional[str] = None,
    level: int = logging.ERROR
):
    """
    Log a structured error with full context information.

    Args:
        logger: Logger instance to use
        error: The structured error to log
        user_id: Optional user ID for context
        level: Log level to emit at
    """
    extra = {
        'error_info': error,
        'user_id': user_id
    }

    logger.log(level, error.message, extra=extra)
