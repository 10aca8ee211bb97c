"""Tests for failure classification."""

from __future__ import annotations

import httpx
import pytest

from mailsync.auth.provider import AuthExpiredError
from mailsync.integrations.gmail.client import GmailApiError
from mailsync.integrations.gmail.parser import MailParseError
from mailsync.providers.base import HistoryCursorExpiredError
from mailsync.sync.errors import ErrorClassifier, ErrorKind


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


class TestErrorClassifierApiErrors:
    """Tests for HTTP status mapping."""

    @pytest.mark.parametrize(
        ("status_code", "reason", "expected"),
        [
            (401, None, ErrorKind.AUTHENTICATION_EXPIRED),
            (429, None, ErrorKind.RATE_LIMITED),
            (403, "userRateLimitExceeded", ErrorKind.RATE_LIMITED),
            (403, "rateLimitExceeded", ErrorKind.RATE_LIMITED),
            (403, "insufficientPermissions", ErrorKind.UNKNOWN),
            (500, None, ErrorKind.SERVER_ERROR),
            (503, None, ErrorKind.SERVER_ERROR),
            (408, None, ErrorKind.TRANSIENT_NETWORK),
            (404, None, ErrorKind.NOT_FOUND),
            (410, None, ErrorKind.NOT_FOUND),
            (400, None, ErrorKind.VALIDATION),
            (422, None, ErrorKind.VALIDATION),
        ],
    )
    def test_status_mapping(
        self,
        classifier: ErrorClassifier,
        status_code: int,
        reason: str | None,
        expected: ErrorKind,
    ) -> None:
        """Test each status maps to its error kind."""
        error = GmailApiError("boom", status_code=status_code, reason=reason)

        classified = classifier.classify(error)

        assert classified.kind == expected
        assert classified.status_code == status_code

    def test_retry_after_kept_for_rate_limits(self, classifier: ErrorClassifier) -> None:
        """Test the server hint travels with rate-limit failures."""
        error = GmailApiError("slow down", status_code=429, retry_after=7.0)

        classified = classifier.classify(error)

        assert classified.retryable is True
        assert classified.retry_after == 7.0

    def test_retry_after_ignored_for_other_kinds(self, classifier: ErrorClassifier) -> None:
        """Test Retry-After on a 503 does not leak into the classification."""
        error = GmailApiError("unavailable", status_code=503, retry_after=9.0)

        assert classifier.classify(error).retry_after is None


class TestErrorClassifierExceptions:
    """Tests for non-HTTP exceptions."""

    @pytest.mark.parametrize(
        ("exc", "expected", "retryable"),
        [
            (AuthExpiredError("acct-1"), ErrorKind.AUTHENTICATION_EXPIRED, False),
            (HistoryCursorExpiredError("5"), ErrorKind.NOT_FOUND, False),
            (MailParseError("bad"), ErrorKind.VALIDATION, False),
            (httpx.ConnectError("refused"), ErrorKind.TRANSIENT_NETWORK, True),
            (httpx.ReadTimeout("slow"), ErrorKind.TRANSIENT_NETWORK, True),
            (TimeoutError(), ErrorKind.TRANSIENT_NETWORK, True),
            (ConnectionResetError(), ErrorKind.TRANSIENT_NETWORK, True),
            (RuntimeError("?"), ErrorKind.UNKNOWN, False),
        ],
    )
    def test_exception_mapping(
        self,
        classifier: ErrorClassifier,
        exc: Exception,
        expected: ErrorKind,
        retryable: bool,
    ) -> None:
        """Test exception types map to kinds and retryability."""
        classified = classifier.classify(exc)

        assert classified.kind == expected
        assert classified.retryable is retryable

    def test_empty_message_uses_type_name(self, classifier: ErrorClassifier) -> None:
        """Test exceptions without text still get a message."""
        assert classifier.classify(TimeoutError()).message == "TimeoutError"

    def test_custom_retryable_kinds(self) -> None:
        """Test the retryable set is configurable."""
        classifier = ErrorClassifier(retryable_kinds=frozenset({ErrorKind.UNKNOWN}))

        assert classifier.classify(RuntimeError("x")).retryable is True
        assert classifier.classify(TimeoutError()).retryable is False
