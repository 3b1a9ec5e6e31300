"""Canonical language definitions.

Maps file extensions and well-known filenames to a language name used as the
``language_hint`` of indexed documents. The hint is informational (shown by
``sift status`` and in JSON output); it never changes how a file is
tokenized.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePath


@dataclass(frozen=True, slots=True)
class Language:
    """Canonical definition for a language name.

    Attributes:
        name: Unique identifier (lowercase, e.g., "python", "rust")
        extensions: File extensions including dot (e.g., ".py", ".rs")
        filenames: Special filenames to detect (lowercase, EXACT match only)
    """

    name: str
    extensions: frozenset[str]
    filenames: frozenset[str] = field(default_factory=frozenset)


def _lang(name: str, extensions: str, filenames: str = "") -> Language:
    return Language(
        name=name,
        extensions=frozenset(extensions.split()),
        filenames=frozenset(filenames.split()),
    )


ALL_LANGUAGES: tuple[Language, ...] = (
    _lang("python", ".py .pyi .pyw .pyx", "pipfile"),
    _lang("javascript", ".js .jsx .mjs .cjs .vue .svelte"),
    _lang("typescript", ".ts .tsx .mts .cts"),
    _lang("rust", ".rs"),
    _lang("go", ".go", "go.mod go.sum"),
    _lang("java", ".java"),
    _lang("kotlin", ".kt .kts"),
    _lang("scala", ".scala .sc"),
    _lang("csharp", ".cs .csx"),
    _lang("fsharp", ".fs .fsi .fsx"),
    _lang("c_cpp", ".c .h .cc .cpp .cxx .hpp .hh .hxx .ino"),
    _lang("objc", ".m .mm"),
    _lang("swift", ".swift"),
    _lang("ruby", ".rb .rake .gemspec", "gemfile rakefile"),
    _lang("php", ".php .phtml"),
    _lang("elixir", ".ex .exs .erl .hrl"),
    _lang("haskell", ".hs .lhs"),
    _lang("ocaml", ".ml .mli .re .rei"),
    _lang("clojure", ".clj .cljs .cljc .edn"),
    _lang("lua", ".lua"),
    _lang("perl", ".pl .pm"),
    _lang("r", ".r .rmd"),
    _lang("julia", ".jl"),
    _lang("zig", ".zig"),
    _lang("nim", ".nim"),
    _lang("dart", ".dart"),
    _lang("shell", ".sh .bash .zsh .fish .ps1"),
    _lang("sql", ".sql"),
    _lang("html", ".html .htm .xhtml"),
    _lang("css", ".css .scss .sass .less"),
    _lang("markdown", ".md .markdown .rst .adoc"),
    _lang("json", ".json .jsonc .json5"),
    _lang("yaml", ".yaml .yml"),
    _lang("toml", ".toml", "cargo.lock"),
    _lang("xml", ".xml .xsd .xsl .svg"),
    _lang("protobuf", ".proto"),
    _lang("graphql", ".graphql .gql"),
    _lang("terraform", ".tf .tfvars .hcl"),
    _lang("nix", ".nix"),
    _lang("docker", ".dockerfile", "dockerfile containerfile"),
    _lang("make", ".mk .mak", "makefile gnumakefile"),
)

EXTENSION_TO_NAME: dict[str, str] = {
    ext: lang.name for lang in ALL_LANGUAGES for ext in lang.extensions
}

FILENAME_TO_NAME: dict[str, str] = {
    fname: lang.name for lang in ALL_LANGUAGES for fname in lang.filenames
}


def detect_language(path: str | PurePath) -> str | None:
    """Language name for a path, by exact filename first, then extension."""
    p = PurePath(path)
    name = p.name.lower()
    if name in FILENAME_TO_NAME:
        return FILENAME_TO_NAME[name]
    return EXTENSION_TO_NAME.get(p.suffix.lower())
