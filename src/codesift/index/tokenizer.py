"""Code-aware tokenizer.

Identifiers in source code routinely contain characters that natural-language
tokenizers discard: ``$scope``, ``@Override``, ``#include``, ``kebab-case``,
``snake_case``. Those five characters stay inside tokens; whitespace, the
ASCII separators ``\\x1c``-``\\x1f`` and all other ASCII punctuation separate
them. Everything else (letters, digits and any non-ASCII character) extends
the current token. Tokens are lower-cased.

There are no stop words and no minimum length: single-character tokens such
as ``i`` or ``x`` are indexed like any other.

``TOKEN_PATTERN`` is written in the subset of regex syntax shared by Python's
``re`` and Rust's ``regex`` crate: the text index registers the same pattern
as its tantivy tokenizer, so query terms and indexed terms always agree.
"""

from __future__ import annotations

import re
import string
from dataclasses import dataclass

KEPT_PUNCTUATION = "$@#-_"
SEPARATOR_PUNCTUATION = "".join(c for c in string.punctuation if c not in KEPT_PUNCTUATION)


def _class_escape(chars: str) -> str:
    return "".join("\\" + c if c in "\\[]^-&~" else c for c in chars)


TOKEN_PATTERN = r"[^\s\x1c-\x1f" + _class_escape(SEPARATOR_PUNCTUATION) + r"]+"

_TOKEN_RE = re.compile(TOKEN_PATTERN)


def split_lines(content: str) -> list[str]:
    """Lines numbered the way editors and grep number them.

    Only ``\\n`` ends a line (a trailing ``\\r`` is dropped); form feeds and
    the other characters ``str.splitlines`` treats as breaks stay in the line.
    """
    lines = content.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


@dataclass(frozen=True, slots=True)
class Token:
    """A token with its location in the source text.

    ``byte_offset`` is the UTF-8 offset of the first byte of the token;
    ``line_number`` is 1-based.
    """

    text: str
    byte_offset: int
    line_number: int


def tokenize(content: str) -> list[Token]:
    """Split ``content`` into lower-cased tokens, in document order."""
    tokens: list[Token] = []
    line_byte_start = 0
    for line_number, line in enumerate(content.split("\n"), start=1):
        ascii_line = line.isascii()
        for match in _TOKEN_RE.finditer(line):
            start = match.start()
            offset = start if ascii_line else len(line[:start].encode("utf-8"))
            tokens.append(Token(match.group().lower(), line_byte_start + offset, line_number))
        line_byte_start += (len(line) if ascii_line else len(line.encode("utf-8"))) + 1
    return tokens


def token_texts(content: str) -> list[str]:
    """Token strings only, in document order."""
    return [m.group().lower() for m in _TOKEN_RE.finditer(content)]


@dataclass(frozen=True, slots=True)
class QueryTerm:
    """A query token plus how it may sit inside a document token.

    A literal query only matches a document if every query token appears
    there. The first token may be the tail of a longer document token and
    the last may be its head, unless the query begins/ends with a separator.
    A lone token with no separators on either side may sit anywhere inside
    a document token.
    """

    text: str
    open_left: bool
    open_right: bool

    @property
    def partial(self) -> bool:
        return self.open_left or self.open_right

    @property
    def pattern(self) -> str:
        """Regex matching every indexed term this query term accepts."""
        left = ".*" if self.open_left else ""
        right = ".*" if self.open_right else ""
        return f"{left}{re.escape(self.text)}{right}"


def query_terms(query: str) -> list[QueryTerm]:
    """Derive lookup terms for a literal query using the tokenizer's rules."""
    matches = list(_TOKEN_RE.finditer(query))
    terms: list[QueryTerm] = []
    for i, match in enumerate(matches):
        terms.append(
            QueryTerm(
                text=match.group().lower(),
                open_left=i == 0 and match.start() == 0,
                open_right=i == len(matches) - 1 and match.end() == len(query),
            )
        )
    return terms
