#!/usr/bin/env python3
"""
Unit tests for the client exception hierarchy and error normalization.
"""

import logging

from vyaapar_shared.exceptions import (
    AuthExpiredError, ClientNotStartedError, ConfigurationError, ErrorCode, NetworkError,
    RecoveryAction, ServerError, UnauthorizedError, ValidationError, VyaaparError,
    create_error_response, handle_exception
)
from vyaapar_shared.logging_config import StructuredFormatter, log_structured_error, mask_token


class TestNormalizedShape:
    """Every error reaching a caller has the {status_code, code, message} shape."""

    def test_server_error_keeps_server_code(self):
        error = ServerError("GSTIN is invalid", status_code=422, code="INVALID_GSTIN")

        assert error.normalized() == {
            'status_code': 422,
            'code': 'INVALID_GSTIN',
            'message': 'GSTIN is invalid'
        }
        assert error.error_code == ErrorCode.SERVER_REQUEST_REJECTED

    def test_server_error_codes_by_status(self):
        assert ServerError("missing", status_code=404).error_code == ErrorCode.SERVER_NOT_FOUND
        assert ServerError("down", status_code=503).error_code == ErrorCode.SERVER_INTERNAL_ERROR
        assert ServerError("down", status_code=503).code == 'UNKNOWN'

    def test_network_error_has_status_zero(self):
        error = NetworkError("connection refused")

        assert error.status_code == 0
        assert error.code == 'NETWORK_ERROR'
        assert RecoveryAction.RETRY_WITH_BACKOFF in error.recovery_actions
        assert "connection" in error.normalized()['message'].lower()

    def test_auth_expired_error(self):
        error = AuthExpiredError()

        assert error.status_code == 401
        assert error.code == 'SESSION_EXPIRED'
        assert error.user_message == "Your session has expired. Please log in again."
        assert error.recovery_actions == [RecoveryAction.LOGIN_AGAIN]

    def test_auth_expired_error_custom_error_code(self):
        error = AuthExpiredError("refresh failed", error_code=ErrorCode.AUTH_REFRESH_FAILED)
        assert error.error_code == ErrorCode.AUTH_REFRESH_FAILED
        assert error.code == 'SESSION_EXPIRED'

    def test_unauthorized_error_is_server_error(self):
        error = UnauthorizedError("Access token expired", code="TOKEN_EXPIRED")

        assert isinstance(error, ServerError)
        assert error.status_code == 401
        assert error.code == 'TOKEN_EXPIRED'

    def test_validation_error_field(self):
        error = ValidationError("bad mobile", field_name='mobile')

        assert error.code == 'VALIDATION_ERROR'
        assert error.context['field_name'] == 'mobile'

    def test_client_not_started_error(self):
        error = ClientNotStartedError("session")

        assert isinstance(error, ConfigurationError)
        assert error.error_code == ErrorCode.CONFIG_CLIENT_NOT_STARTED
        assert error.context['component'] == 'session'

    def test_auth_error_codes(self):
        auth_codes = {code.name for code in ErrorCode if code.name.startswith('AUTH_')}

        assert auth_codes == {'AUTH_UNAUTHORIZED', 'AUTH_SESSION_EXPIRED', 'AUTH_REFRESH_FAILED'}
        assert len({code.value for code in ErrorCode}) == len(ErrorCode)


class TestErrorSerialization:

    def test_to_dict_includes_cause(self):
        cause = OSError("disk full")
        error = VyaaparError("write failed", ErrorCode.STORAGE_UNAVAILABLE, cause=cause)

        result = create_error_response(error)

        assert result['error']['code'] == 'STORAGE_5001'
        assert result['error']['cause'] == {'type': 'OSError', 'message': 'disk full'}
        assert 'timestamp' in result['error']


class TestHandleException:
    """Test mapping of stray exceptions onto the taxonomy."""

    def test_passes_structured_errors_through(self):
        error = NetworkError("down")
        assert handle_exception(error) is error

    def test_timeout_maps_to_network_timeout(self):
        error = handle_exception(TimeoutError())
        assert isinstance(error, NetworkError)
        assert error.error_code == ErrorCode.NETWORK_TIMEOUT

    def test_connection_error_maps_to_network_error(self):
        error = handle_exception(ConnectionResetError("reset"))
        assert isinstance(error, NetworkError)

    def test_value_error_maps_to_validation_error(self):
        assert isinstance(handle_exception(ValueError("bad")), ValidationError)

    def test_unknown_error_gets_generic_message(self):
        error = handle_exception(RuntimeError("kaboom"))
        assert error.error_code == ErrorCode.INTERNAL_UNEXPECTED_ERROR
        assert error.user_message == "Something went wrong. Please try again."


class TestErrorLogging:

    def test_structured_error_record(self, caplog):
        logger = logging.getLogger("test.errors")
        error = ServerError("GSTIN is invalid", status_code=422, code="INVALID_GSTIN")

        with caplog.at_level(logging.ERROR, logger="test.errors"):
            log_structured_error(logger, error, user_id="usr_001")

        record = caplog.records[-1]
        assert record.error_info is error
        formatted = StructuredFormatter().format(record)
        assert '"status_code": 422' in formatted
        assert 'SERVER_3001' in formatted

    def test_mask_token(self):
        assert mask_token(None) == "<none>"
        assert mask_token("abcdefghijkl") == "******ijkl"
        assert "abcdefgh" not in mask_token("abcdefghijkl")
