"""
Tests for provider failure classification.
"""
import pytest

from outreach.services.accounts.types import AccountHealthState
from outreach.services.channels.classification import FailureClass, classify, normalize_code


class TestNormalizeCode:

    @pytest.mark.parametrize("raw,expected", [
        ("errors/cannot_resend_yet", "cannot_resend_yet"),
        ("Disconnected-Account", "disconnected_account"),
        ("  LIMIT_EXCEEDED ", "limit_exceeded"),
        (None, None),
        ("", None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_code(raw) == expected


class TestLinkedInClassification:

    @pytest.mark.parametrize("code,failure_class,state", [
        ("errors/cannot_resend_yet", FailureClass.RATE_LIMITED, AccountHealthState.RATE_LIMITED),
        ("limit_exceeded", FailureClass.RATE_LIMITED, AccountHealthState.RATE_LIMITED),
        ("disconnected_account", FailureClass.CREDENTIAL_ERROR, AccountHealthState.EXPIRED),
        ("checkpoint_required", FailureClass.CREDENTIAL_ERROR, AccountHealthState.CHECKPOINTED),
        ("invalid_recipient", FailureClass.OTHER, None),
    ])
    def test_codes(self, code, failure_class, state):
        result = classify("linkedin", code)
        assert result.failure_class == failure_class
        assert result.health_state == state

    @pytest.mark.parametrize("status,failure_class", [
        (429, FailureClass.RATE_LIMITED),
        (401, FailureClass.CREDENTIAL_ERROR),
        (403, FailureClass.CREDENTIAL_ERROR),
        (500, FailureClass.OTHER),
    ])
    def test_statuses(self, status, failure_class):
        assert classify("linkedin", None, status).failure_class == failure_class

    @pytest.mark.parametrize("code,status", [
        (None, 404),
        ("errors/resource_not_found", 404),
        ("resource_not_found", None),
    ])
    def test_missing_recipient_is_not_an_account_problem(self, code, status):
        result = classify("linkedin", code, status)
        assert result.failure_class == FailureClass.OTHER
        assert result.health_state is None

    def test_code_beats_status(self):
        result = classify("linkedin", "cannot_resend_yet", 401)
        assert result.failure_class == FailureClass.RATE_LIMITED

    @pytest.mark.parametrize("code", ["already_invited", "errors/already_invited_recently", "already_connected"])
    def test_already_done_is_success(self, code):
        result = classify("linkedin", code, 422)
        assert result.is_success
        assert result.already_done

    def test_conflict_status_is_success(self):
        assert classify("linkedin", None, 409).is_success


class TestOtherChannels:

    def test_email_quota(self):
        result = classify("email", "daily_quota_exceeded", 200)
        assert result.failure_class == FailureClass.RATE_LIMITED

    def test_email_suspended_mailbox(self):
        assert classify("email", "mailbox_suspended").health_state == AccountHealthState.CHECKPOINTED

    def test_voice_forbidden(self):
        assert classify("voice", None, 403).failure_class == FailureClass.CREDENTIAL_ERROR

    def test_unknown_channel_uses_defaults(self):
        assert classify("sms", None, 429).failure_class == FailureClass.RATE_LIMITED
        assert classify("sms", "weird", 418).failure_class == FailureClass.OTHER

    def test_nothing_known(self):
        result = classify("linkedin")
        assert result.failure_class == FailureClass.OTHER
        assert result.code is None
