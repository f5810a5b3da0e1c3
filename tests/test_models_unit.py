#!/usr/bin/env python3
"""
Unit tests for the session core data models.

Tests user and token parsing, session completeness and the pure session state
reducer.
"""

import pytest
from datetime import datetime, timedelta

from vyaapar_shared.models import (
    AuthResponse, ErrorCleared, ErrorRaised, LoggedOut, LoginOutcome, LoginSucceeded,
    OperationStarted, OtpRequested, Plan, RestoreFailed, Session, SessionExpired,
    SessionRestored, SessionState, SessionStatus, User, reduce_state
)

from conftest import auth_payload, user_payload


class TestUser:
    """Test User model."""

    def test_user_from_api(self):
        user = User.from_api(user_payload(is_new_user=True))

        assert user.id == "usr_001"
        assert user.mobile == "9876543210"
        assert user.is_new_user is True
        assert user.is_business_setup is False
        assert user.plan == Plan.STARTER
        assert user.created_at.year == 2024

    def test_user_round_trip_through_dict(self):
        user = User.from_api(user_payload(plan='pro'))
        restored = User.from_api(user.to_dict())

        assert restored == user
        assert user.to_dict()['plan'] == 'pro'
        assert 'isNewUser' in user.to_dict()

    def test_user_empty_id_validation(self):
        with pytest.raises(ValueError, match="User ID cannot be empty"):
            User(id="", mobile="9876543210")

    def test_user_unknown_plan_rejected(self):
        with pytest.raises(ValueError):
            User.from_api(user_payload(plan='platinum'))


class TestSession:
    """Test Session model."""

    def test_session_from_auth_response(self):
        response = AuthResponse.from_api(auth_payload())
        now = datetime(2024, 1, 1, 12, 0, 0)

        session = Session.from_auth_response(response, now=now)

        assert session.access_token == "access-1"
        assert session.refresh_token == "refresh-1"
        assert session.expires_at == now + timedelta(seconds=3600)
        assert session.is_access_token_expired(now) is False
        assert session.is_access_token_expired(now + timedelta(hours=2)) is True

    def test_session_requires_both_tokens(self):
        user = User.from_api(user_payload())

        with pytest.raises(ValueError):
            Session(user=user, access_token="access", refresh_token="")
        with pytest.raises(ValueError):
            Session(user=user, access_token="", refresh_token="refresh")

    def test_auth_response_missing_tokens(self):
        with pytest.raises(KeyError):
            AuthResponse.from_api({'user': user_payload()})


class TestLoginOutcome:

    def test_new_user_requires_profile_setup(self):
        outcome = LoginOutcome(User.from_api(user_payload(is_new_user=True)))
        assert outcome.is_new_user is True
        assert outcome.requires_profile_setup is True

    def test_existing_user_goes_home(self):
        outcome = LoginOutcome(User.from_api(user_payload()))
        assert outcome.requires_profile_setup is False


class TestReduceState:
    """Test the session state reducer."""

    @pytest.fixture
    def user(self):
        return User.from_api(user_payload())

    def test_initial_state_is_restoring(self):
        state = SessionState()
        assert state.status == SessionStatus.RESTORING
        assert state.is_loading is True
        assert state.is_authenticated is False

    def test_restore_success(self, user):
        state = reduce_state(SessionState(), SessionRestored(user))
        assert state.status == SessionStatus.AUTHENTICATED
        assert state.user == user
        assert state.is_loading is False
        assert state.is_authenticated is True

    def test_restore_failure(self):
        state = reduce_state(SessionState(), RestoreFailed())
        assert state.status == SessionStatus.UNAUTHENTICATED
        assert state.is_loading is False

    def test_late_restore_failure_does_not_log_out(self, user):
        authenticated = reduce_state(SessionState(), LoginSucceeded(user))
        state = reduce_state(authenticated, RestoreFailed())
        assert state.status == SessionStatus.AUTHENTICATED
        assert state.user == user

    def test_otp_flow(self, user):
        state = reduce_state(SessionState(), RestoreFailed())
        state = reduce_state(state, OperationStarted())
        assert state.is_loading is True

        state = reduce_state(state, OtpRequested("9876543210"))
        assert state.status == SessionStatus.OTP_PENDING
        assert state.pending_identity == "9876543210"
        assert state.user is None

        state = reduce_state(state, LoginSucceeded(user))
        assert state.status == SessionStatus.AUTHENTICATED
        assert state.pending_identity is None

    def test_error_does_not_change_status(self):
        pending = reduce_state(SessionState(), OtpRequested("9876543210"))
        state = reduce_state(pending, ErrorRaised("Invalid OTP"))

        assert state.status == SessionStatus.OTP_PENDING
        assert state.error == "Invalid OTP"
        assert state.pending_identity == "9876543210"

        cleared = reduce_state(state, ErrorCleared())
        assert cleared.error is None
        assert cleared.status == SessionStatus.OTP_PENDING

    def test_operation_start_clears_error(self):
        state = reduce_state(SessionState(), ErrorRaised("boom"))
        state = reduce_state(state, OperationStarted())
        assert state.error is None

    def test_logout_and_expiry(self, user):
        authenticated = reduce_state(SessionState(), LoginSucceeded(user))

        logged_out = reduce_state(authenticated, LoggedOut())
        assert logged_out.status == SessionStatus.UNAUTHENTICATED
        assert logged_out.user is None
        assert logged_out.error is None

        expired = reduce_state(authenticated, SessionExpired())
        assert expired.status == SessionStatus.UNAUTHENTICATED
        assert expired.user is None
        assert "expired" in expired.error

    def test_reducer_is_pure(self, user):
        state = SessionState()
        reduce_state(state, LoginSucceeded(user))
        assert state.status == SessionStatus.RESTORING

    def test_unknown_action_returns_same_state(self):
        state = SessionState()
        assert reduce_state(state, object()) is state

    def test_state_to_dict(self, user):
        state = reduce_state(SessionState(), LoginSucceeded(user))
        result = state.to_dict()

        assert result['status'] == 'authenticated'
        assert result['is_authenticated'] is True
        assert result['user']['id'] == 'usr_001'
        assert result['error'] is None
