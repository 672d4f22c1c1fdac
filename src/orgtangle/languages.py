"""Per-language file extensions and line comment syntax."""

from __future__ import annotations

from typing import Mapping, Optional

# Languages whose tangled file extension is not the language name itself.
EXTENSIONS: dict[str, str] = {
    "bash": "sh",
    "bibtex": "bib",
    "c++": "cpp",
    "clojure": "clj",
    "cpp": "cpp",
    "elisp": "el",
    "emacs-lisp": "el",
    "haskell": "hs",
    "javascript": "js",
    "julia": "jl",
    "latex": "tex",
    "makefile": "mk",
    "markdown": "md",
    "ocaml": "ml",
    "perl": "pl",
    "python": "py",
    "r": "R",
    "ruby": "rb",
    "rust": "rs",
    "scheme": "scm",
    "shell": "sh",
    "text": "txt",
    "typescript": "ts",
    "zsh": "sh",
}

DEFAULT_COMMENT: tuple[str, str] = ("#", "")

COMMENT_SYNTAX: dict[str, tuple[str, str]] = {
    "c": ("//", ""),
    "c++": ("//", ""),
    "clojure": (";;", ""),
    "cpp": ("//", ""),
    "css": ("/*", "*/"),
    "elisp": (";;", ""),
    "emacs-lisp": (";;", ""),
    "go": ("//", ""),
    "haskell": ("--", ""),
    "html": ("<!--", "-->"),
    "java": ("//", ""),
    "javascript": ("//", ""),
    "js": ("//", ""),
    "bibtex": ("%", ""),
    "latex": ("%", ""),
    "lua": ("--", ""),
    "ocaml": ("(*", "*)"),
    "rust": ("//", ""),
    "scheme": (";;", ""),
    "sql": ("--", ""),
    "typescript": ("//", ""),
    "xml": ("<!--", "-->"),
}


def extension_for(language: str, overrides: Optional[Mapping[str, str]] = None) -> str:
    """File extension used when a block in ``language`` is tangled with ``yes``."""
    language = language.lower()
    if overrides and language in overrides:
        return overrides[language]
    return EXTENSIONS.get(language, language)


def comment_syntax_for(
    language: str,
    overrides: Optional[Mapping[str, tuple[str, str]]] = None,
) -> tuple[str, str]:
    language = language.lower()
    if overrides and language in overrides:
        return overrides[language]
    return COMMENT_SYNTAX.get(language, DEFAULT_COMMENT)


def comment_line(text: str, syntax: tuple[str, str]) -> str:
    """Render ``text`` as a single comment line."""
    start, end = syntax
    if end:
        return f"{start} {text} {end}"
    return f"{start} {text}"
