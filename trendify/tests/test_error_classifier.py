"""
Unit tests for error classification.

Covers rule priority, the credential-dependent quota message, refusal
detection and the embedded-JSON fallback.
"""

import pytest

from trendify.core.error_classifier import (
    classify,
    INVALID_CREDENTIAL_MESSAGE,
    QUOTA_USER_KEY_MESSAGE,
    QUOTA_SHARED_KEY_MESSAGE,
    SAFETY_MESSAGE,
    MODEL_REFUSAL_MESSAGE,
    NO_CREDENTIAL_MESSAGE,
    NETWORK_MESSAGE,
    NON_ERROR_MESSAGE,
)
from trendify.models import ErrorKind
from trendify.stages.image_generation import (
    ModelRefusalError,
    NetworkError,
    NoCredentialError,
    SafetyBlockedError,
    UpstreamError,
)


class TestClassificationRules:
    """One test per rule, in priority order."""

    @pytest.mark.parametrize("text", [
        "API key not valid. Please pass a valid API key.",
        "403 PERMISSION_DENIED",
    ])
    def test_invalid_credential(self, text):
        result = classify(Exception(text), has_user_credential=True)
        assert result.kind == ErrorKind.INVALID_CREDENTIAL
        assert result.message == INVALID_CREDENTIAL_MESSAGE

    def test_quota_with_user_key(self):
        result = classify(Exception("RESOURCE_EXHAUSTED"), has_user_credential=True)
        assert result.kind == ErrorKind.QUOTA_EXHAUSTED
        assert result.message == QUOTA_USER_KEY_MESSAGE

    def test_quota_with_shared_key(self):
        result = classify(Exception("got 429 from upstream"), has_user_credential=False)
        assert result.kind == ErrorKind.QUOTA_EXHAUSTED
        assert result.message == QUOTA_SHARED_KEY_MESSAGE

    def test_safety(self):
        result = classify(SafetyBlockedError(), has_user_credential=False)
        assert result.kind == ErrorKind.SAFETY_BLOCKED
        assert result.message == SAFETY_MESSAGE

    def test_model_refusal_with_known_phrasing(self):
        result = classify(ModelRefusalError("I'm sorry, I cannot help with that."), has_user_credential=False)
        assert result.kind == ErrorKind.MODEL_REFUSAL
        assert result.message == MODEL_REFUSAL_MESSAGE

    def test_model_refusal_phrasing_is_case_insensitive(self):
        result = classify(Exception("MODEL_ERROR: AS AN AI model I won't"), has_user_credential=False)
        assert result.message == MODEL_REFUSAL_MESSAGE

    def test_model_error_other_text(self):
        result = classify(ModelRefusalError("Here is a description of the cat."), has_user_credential=False)
        assert result.kind == ErrorKind.MODEL_REFUSAL
        assert result.message == "Model error: Here is a description of the cat."

    def test_no_credential(self):
        result = classify(NoCredentialError(), has_user_credential=False)
        assert result.kind == ErrorKind.NO_CREDENTIAL
        assert result.message == NO_CREDENTIAL_MESSAGE

    @pytest.mark.parametrize("raw", [
        NetworkError("connection refused"),
        TypeError("Failed to fetch"),
    ])
    def test_network(self, raw):
        result = classify(raw, has_user_credential=False)
        assert result.kind == ErrorKind.NETWORK_ERROR
        assert result.message == NETWORK_MESSAGE

    def test_embedded_json_message(self):
        raw = Exception('Proxy failure {"error": {"code": 500, "message": "Backend overloaded"}}')
        result = classify(raw, has_user_credential=False)
        assert result.kind == ErrorKind.UNKNOWN
        assert result.message == "Something went wrong: Backend overloaded"

    def test_unknown_uses_raw_message(self):
        result = classify(Exception("weird failure"), has_user_credential=False)
        assert result.kind == ErrorKind.UNKNOWN
        assert "weird failure" in result.message

    def test_malformed_embedded_json_falls_through(self):
        result = classify(Exception("oops {not json"), has_user_credential=False)
        assert result.kind == ErrorKind.UNKNOWN
        assert "oops {not json" in result.message


class TestClassificationPriority:

    def test_invalid_credential_beats_quota(self):
        result = classify(Exception("API key not valid (429)"), has_user_credential=True)
        assert result.kind == ErrorKind.INVALID_CREDENTIAL

    def test_quota_beats_safety(self):
        result = classify(Exception("RESOURCE_EXHAUSTED while checking SAFETY"), has_user_credential=True)
        assert result.kind == ErrorKind.QUOTA_EXHAUSTED

    def test_upstream_429_is_quota(self):
        result = classify(UpstreamError(429, "Too many requests"), has_user_credential=False)
        assert result.kind == ErrorKind.QUOTA_EXHAUSTED

    def test_upstream_invalid_key_is_invalid_credential(self):
        result = classify(UpstreamError(400, "API key not valid. Please pass a valid API key."), True)
        assert result.kind == ErrorKind.INVALID_CREDENTIAL


class TestInputShapes:

    def test_plain_string_is_classified(self):
        assert classify("RESOURCE_EXHAUSTED", False).kind == ErrorKind.QUOTA_EXHAUSTED

    @pytest.mark.parametrize("raw", [None, 42, {"error": "x"}])
    def test_non_error_input(self, raw):
        result = classify(raw, has_user_credential=False)
        assert result.kind == ErrorKind.UNKNOWN
        assert result.message == NON_ERROR_MESSAGE

    def test_headline_is_first_paragraph(self):
        result = classify(SafetyBlockedError(), has_user_credential=False)
        assert result.headline == SAFETY_MESSAGE.split("\n\n")[0]
        assert "\n\n" not in result.headline
