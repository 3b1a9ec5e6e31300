"""Tests for cooperative cancellation."""

import threading

import pytest

from codesift.core.cancel import CancellationToken
from codesift.core.errors import ErrorCode, InvalidQueryError


class TestCancellationToken:
    def test_fresh_token_does_not_raise(self) -> None:
        token = CancellationToken()
        token.raise_if_cancelled()
        assert token.cancelled is False

    def test_given_cancel_from_other_thread_when_checked_then_raises(self) -> None:
        """A cancel issued on another thread is observed by the scanning thread."""
        # Given
        token = CancellationToken()
        thread = threading.Thread(target=token.cancel)

        # When
        thread.start()
        thread.join()

        # Then
        with pytest.raises(InvalidQueryError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.code is ErrorCode.QUERY_CANCELLED
