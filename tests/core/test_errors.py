"""Tests for error types and codes."""

import pytest

from codesift.core.errors import (
    CodeSiftError,
    ConfigError,
    ErrorCode,
    IndexLockedError,
    InvalidQueryError,
    IoFailureError,
    NotFoundError,
    NotIndexedError,
    SchemaMismatchError,
    UnsupportedError,
)


class TestErrorCode:
    """Error code value tests."""

    @pytest.mark.parametrize(
        ("code", "expected_range"),
        [
            (ErrorCode.CONFIG_PARSE_ERROR, 2000),
            (ErrorCode.NOT_INDEXED, 3000),
            (ErrorCode.INDEX_LOCKED, 3000),
            (ErrorCode.INVALID_QUERY, 4000),
            (ErrorCode.INTERNAL_ERROR, 9000),
        ],
    )
    def test_given_error_code_when_checked_then_in_correct_range(
        self, code: ErrorCode, expected_range: int
    ) -> None:
        """Error codes fall within their designated numeric range."""
        # Given
        error_code = code

        # When
        value = error_code.value

        # Then
        assert expected_range <= value < expected_range + 1000


class TestCodeSiftError:
    """Base error behavior tests."""

    def test_given_error_when_to_dict_then_serializes_all_fields(self) -> None:
        """Error serializes to dict with all required fields."""
        # Given
        error = CodeSiftError(
            code=ErrorCode.IO_FAILURE,
            message="Test message",
            retryable=True,
            details={"key": "value"},
        )

        # When
        result = error.to_dict()

        # Then
        assert result == {
            "code": 3006,
            "error": "IO_FAILURE",
            "message": "Test message",
            "retryable": True,
            "details": {"key": "value"},
        }

    def test_given_error_with_hint_when_to_dict_then_hint_included(self) -> None:
        """Remediation hints are part of the serialized form."""
        # Given
        error = NotIndexedError.for_workspace("/repo", "text")

        # When
        result = error.to_dict()

        # Then
        assert result["hint"] == "Run 'sift index /repo' first."

    def test_given_error_when_str_then_human_readable(self) -> None:
        """Error string representation is human readable."""
        # Given
        error = CodeSiftError(code=ErrorCode.INTERNAL_ERROR, message="Something broke")

        # When
        result = str(error)

        # Then
        assert result == "[9001] INTERNAL_ERROR: Something broke"

    def test_given_error_when_raised_then_catchable_as_exception(self) -> None:
        """Errors are real exceptions usable with pytest.raises."""
        with pytest.raises(CodeSiftError) as exc_info:
            raise NotFoundError.index("abc123")
        assert exc_info.value.code is ErrorCode.NOT_FOUND


class TestFactories:
    """Factory constructors carry codes and hints."""

    def test_semantic_not_indexed_hint_mentions_flag(self) -> None:
        error = NotIndexedError.for_workspace("/repo", "semantic")
        assert error.code is ErrorCode.NOT_INDEXED
        assert error.hint is not None and "--semantic" in error.hint

    def test_schema_mismatch_suggests_rebuild(self) -> None:
        error = SchemaMismatchError.versions("/repo", found=0, expected=1)
        assert error.details == {"root": "/repo", "found": 0, "expected": 1}
        assert error.hint is not None and "--rebuild" in error.hint

    def test_index_locked_is_retryable(self) -> None:
        assert IndexLockedError.held("/tmp/x/.lock").retryable is True

    def test_io_failure_keeps_errno(self) -> None:
        error = IoFailureError.from_os_error("/x", OSError(13, "Permission denied"))
        assert error.details["errno"] == 13
        assert "Permission denied" in error.message

    def test_unsupported_points_at_extra(self) -> None:
        error = UnsupportedError.embeddings("fastembed is not installed")
        assert error.hint is not None and "semantic" in error.hint

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (InvalidQueryError.bad_regex("(", "missing )"), ErrorCode.INVALID_QUERY),
            (InvalidQueryError.bad_option("limit", "too big"), ErrorCode.INVALID_QUERY),
            (InvalidQueryError.empty(), ErrorCode.INVALID_QUERY),
            (InvalidQueryError.cancelled(), ErrorCode.QUERY_CANCELLED),
            (ConfigError.parse_error("/c.yaml", "bad"), ErrorCode.CONFIG_PARSE_ERROR),
            (ConfigError.invalid_value("search.vector_weight", -2, "range"), ErrorCode.CONFIG_INVALID_VALUE),
        ],
    )
    def test_factory_codes(self, error: CodeSiftError, code: ErrorCode) -> None:
        assert error.code is code
