"""
tests/test_errors.py — Error Taxonomy & Safe Messages
======================================================
"""

from __future__ import annotations

from symbolica.constants import GENERIC_ERROR_MESSAGE
from symbolica.errors import (
    AuthorizationError,
    BusinessError,
    RemoteTimeoutError,
    TransportError,
    ValidationError,
    is_retryable,
    safe_error_message,
)


class TestRetryable:
    def test_only_transport_errors_retry(self):
        assert is_retryable(TransportError("down"))
        assert not is_retryable(RemoteTimeoutError("fetch", 3))
        assert not is_retryable(AuthorizationError())
        assert not is_retryable(BusinessError("Quest is full"))
        assert not is_retryable(ValidationError("bad"))
        assert not is_retryable(RuntimeError("bug"))


class TestSafeMessages:
    def test_allowlisted_message_passes_through(self):
        assert safe_error_message(BusinessError("Rate limit exceeded")) == "Rate limit exceeded"

    def test_internal_details_are_hidden(self):
        exc = BusinessError('insert collections violates a constraint: duplicate key "slug"')
        assert safe_error_message(exc) == GENERIC_ERROR_MESSAGE
        assert safe_error_message(KeyError("profiles.id")) == GENERIC_ERROR_MESSAGE

    def test_validation_messages_are_local(self):
        assert safe_error_message(ValidationError("Message cannot be empty")) == "Message cannot be empty"

    def test_timeout_reads_as_unavailable(self):
        assert safe_error_message(RemoteTimeoutError("trending", 3)) == "Service temporarily unavailable"


class TestToDict:
    def test_validation_error_carries_field(self):
        assert ValidationError("Too long", field="content").to_dict() == {
            "code": "validation_error",
            "message": "Too long",
            "field": "content",
        }

    def test_other_errors_use_safe_message(self):
        assert TransportError("db at 10.0.0.3 refused").to_dict() == {
            "code": "transport_error",
            "message": GENERIC_ERROR_MESSAGE,
        }

    def test_timeout_message_names_operation(self):
        exc = RemoteTimeoutError("query ('symbols',)", 15)
        assert "timed out after 15.0s" in str(exc)
        assert exc.to_dict()["code"] == "timeout"

    def test_authorization_default_message(self):
        assert AuthorizationError().to_dict()["message"] == "Authentication required"
