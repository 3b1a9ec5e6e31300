"""Tests for the code-aware tokenizer."""

import re

import pytest

from codesift.index.tokenizer import QueryTerm, query_terms, split_lines, token_texts, tokenize


class TestTokenize:
    @pytest.mark.parametrize(
        ("content", "expected"),
        [
            ("$scope.apply()", ["$scope", "apply"]),
            ("@Override public", ["@override", "public"]),
            ("#include <stdio.h>", ["#include", "stdio", "h"]),
            ("kebab-case snake_case", ["kebab-case", "snake_case"]),
            ("a.b(c, d)", ["a", "b", "c", "d"]),
            ("i = x + 1", ["i", "x", "1"]),
        ],
    )
    def test_token_boundaries(self, content: str, expected: list[str]) -> None:
        assert token_texts(content) == expected

    def test_tokens_are_lowercased(self) -> None:
        assert token_texts("HttpServer") == ["httpserver"]

    def test_non_ascii_extends_tokens(self) -> None:
        assert token_texts("naïve_größe ok") == ["naïve_größe", "ok"]

    def test_line_numbers_and_byte_offsets(self) -> None:
        tokens = tokenize("fn main() {\n  héllo world\n}\n")
        by_text = {t.text: t for t in tokens}
        assert by_text["fn"].line_number == 1
        assert by_text["héllo"].line_number == 2
        assert by_text["héllo"].byte_offset == len(b"fn main() {\n  ")
        # "é" is two bytes in UTF-8
        assert by_text["world"].byte_offset == len("fn main() {\n  héllo ".encode())

    def test_tokenize_agrees_with_token_texts(self) -> None:
        content = "let cfg = config::Config::default();\n"
        assert [t.text for t in tokenize(content)] == token_texts(content)


class TestQueryTerms:
    def test_single_token_is_open_both_sides(self) -> None:
        assert query_terms("Config") == [QueryTerm("config", open_left=True, open_right=True)]

    def test_inner_tokens_are_closed(self) -> None:
        terms = query_terms("pub struct Config {")
        assert [t.text for t in terms] == ["pub", "struct", "config"]
        assert terms[0] == QueryTerm("pub", open_left=True, open_right=False)
        assert terms[1] == QueryTerm("struct", open_left=False, open_right=False)
        # trailing "{" is a separator, so "config" must be a whole token
        assert terms[2] == QueryTerm("config", open_left=False, open_right=False)

    @pytest.mark.parametrize(
        ("term", "candidate", "accepted"),
        [
            (QueryTerm("fig", True, True), "config", True),
            (QueryTerm("fig", True, False), "config", True),
            (QueryTerm("con", True, False), "config", False),
            (QueryTerm("con", False, True), "config", True),
            (QueryTerm("config", False, False), "configs", False),
            (QueryTerm("$scope", True, True), "x$scope", True),
        ],
    )
    def test_pattern_accepts(self, term: QueryTerm, candidate: str, accepted: bool) -> None:
        assert (re.fullmatch(term.pattern, candidate) is not None) is accepted

    def test_separator_only_query_has_no_terms(self) -> None:
        assert query_terms("::") == []


class TestSplitLines:
    def test_form_feed_does_not_break_lines(self) -> None:
        """Only newlines end a line, so line numbers match an editor's."""
        # Given
        content = "int a;\f\nint b;\nint needle_here;\n"

        # When
        lines = split_lines(content)

        # Then
        assert lines == ["int a;\f", "int b;", "int needle_here;"]

    @pytest.mark.parametrize("separator", ["\v", "\x1c", "\x85", "\u2028"])
    def test_other_unicode_breaks_stay_in_line(self, separator: str) -> None:
        assert split_lines(f"a{separator}b\nc\n") == [f"a{separator}b", "c"]

    def test_crlf_is_stripped(self) -> None:
        assert split_lines("a\r\nb\r\n") == ["a", "b"]

    def test_missing_final_newline(self) -> None:
        assert split_lines("a\nb") == ["a", "b"]

    def test_empty_content(self) -> None:
        assert split_lines("") == []

    def test_tokenize_line_numbers_ignore_form_feed(self) -> None:
        tokens = tokenize("int a;\f\nint b;\nint needle_here;\n")
        assert {t.text: t.line_number for t in tokens}["needle_here"] == 3
