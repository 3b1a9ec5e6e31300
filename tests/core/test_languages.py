"""Tests for language detection."""

import pytest

from codesift.core.languages import detect_language


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("src/main.rs", "rust"),
        ("app/auth.py", "python"),
        ("web/App.TSX", "typescript"),
        ("Makefile", "make"),
        ("docker/Dockerfile", "docker"),
        ("go.mod", "go"),
        ("notes.unknownext", None),
        ("LICENSE", None),
    ],
)
def test_detect_language(path: str, expected: str | None) -> None:
    assert detect_language(path) == expected
