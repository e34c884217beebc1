"""
Tests for autopost.exceptions.

Covers:
    - Inheritance hierarchy (which errors are ValueErrors, which are service errors)
    - Attributes and messages of the errors that carry context
"""

from datetime import datetime, timezone

import pytest

from autopost.exceptions import (
    ConfigurationError,
    ConflictError,
    ContentEndpointAuthError,
    DatabaseError,
    ExternalPublishError,
    InvalidTransitionError,
    MonthlyLimitExceededError,
    NotFoundError,
    PublisherBaseError,
    RecurrenceSyntaxError,
    RetryExhaustedError,
    ValidationError,
)


# ===========================================================================
# Hierarchy
# ===========================================================================


class TestExceptionHierarchy:
    """Verify the inheritance tree of every exception class."""

    @pytest.mark.parametrize(
        "exc_cls",
        [ConflictError, NotFoundError, ExternalPublishError, ContentEndpointAuthError],
    )
    def test_service_errors(self, exc_cls):
        assert issubclass(exc_cls, PublisherBaseError)

    @pytest.mark.parametrize(
        "exc_cls",
        [RecurrenceSyntaxError, InvalidTransitionError, MonthlyLimitExceededError],
    )
    def test_validation_subclasses(self, exc_cls):
        assert issubclass(exc_cls, ValidationError)
        assert issubclass(exc_cls, ValueError)

    @pytest.mark.parametrize(
        "exc_cls", [DatabaseError, ConfigurationError, RetryExhaustedError, ValidationError]
    )
    def test_not_service_errors(self, exc_cls):
        assert not issubclass(exc_cls, PublisherBaseError)

    def test_auth_error_is_publish_error(self):
        assert issubclass(ContentEndpointAuthError, ExternalPublishError)

    def test_not_found_is_not_value_error(self):
        assert not issubclass(NotFoundError, ValueError)


# ===========================================================================
# Context-carrying errors
# ===========================================================================


class TestNotFoundError:
    def test_message_hides_id(self):
        """The message names the resource only; the ID stays an attribute."""
        err = NotFoundError("Schedule", "abc-123")
        assert str(err) == "Schedule not found"
        assert err.resource == "Schedule"
        assert err.resource_id == "abc-123"


class TestExternalPublishError:
    def test_status_code(self):
        err = ExternalPublishError("WordPress server error", 500)
        assert err.status_code == 500
        assert str(err) == "WordPress server error"

    def test_status_code_optional(self):
        assert ExternalPublishError("no response").status_code is None


class TestRecurrenceSyntaxError:
    def test_attributes_and_message(self):
        err = RecurrenceSyntaxError("61 * * * *", "minute value 61 out of range 0-59")
        assert err.expression == "61 * * * *"
        assert err.reason.startswith("minute")
        assert "'61 * * * *'" in str(err)


class TestInvalidTransitionError:
    def test_default_message(self):
        err = InvalidTransitionError("published", "draft")
        assert err.current == "published"
        assert err.target == "draft"
        assert str(err) == "Cannot move item from 'published' to 'draft'"

    def test_custom_message(self):
        err = InvalidTransitionError("scheduled", "processing", "only drafts")
        assert str(err) == "only drafts"


class TestMonthlyLimitExceededError:
    def test_attributes(self):
        resets = datetime(2026, 11, 1, tzinfo=timezone.utc)
        err = MonthlyLimitExceededError(50, 50, resets)
        assert err.current_count == 50
        assert err.limit == 50
        assert err.resets_at == resets
        assert "50/50" in str(err)
        assert "2026-11-01" in str(err)


class TestRetryExhaustedError:
    def test_attributes_and_message(self):
        cause = ConnectionError("reset by peer")
        err = RetryExhaustedError("get_post", 3, cause)
        assert err.operation == "get_post"
        assert err.attempts == 3
        assert err.last_error is cause
        assert str(err) == "get_post failed after 3 attempts. Last error: reset by peer"


class TestRaiseCatchMechanics:
    def test_catch_transition_as_value_error(self):
        with pytest.raises(ValueError):
            raise InvalidTransitionError("failed", "scheduled")

    def test_catch_auth_as_service_error(self):
        with pytest.raises(PublisherBaseError):
            raise ContentEndpointAuthError("Invalid username or password", 401)
