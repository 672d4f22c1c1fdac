"""Traceability comments around tangled fragments."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from orgtangle.collect import Collection, Fragment, build_collection
from orgtangle.config import Config
from orgtangle.document import Document
from orgtangle.errors import ReferenceExpansionError
from orgtangle.languages import comment_line, comment_syntax_for
from orgtangle.noweb import NowebResolver, Wrap
from orgtangle.options import CommentMode, Phase

_LINK_SPECIAL_RE = re.compile(r"([\[\]\\])")
_LINK_ESCAPE_RE = re.compile(r"\\(.)")


def escape_link_text(text: str) -> str:
    """Backslash-escape brackets and backslashes in link text."""
    return _LINK_SPECIAL_RE.sub(r"\\\1", text)


def unescape_link_text(text: str) -> str:
    return _LINK_ESCAPE_RE.sub(r"\1", text)


@dataclass(frozen=True)
class TraceDescriptor:
    """Where a tangled segment came from."""

    document: str
    heading: str
    occurrence: int
    comment: tuple[str, str]

    @property
    def label(self) -> str:
        return f"{self.heading}:{self.occurrence}"

    def begin(self) -> str:
        return comment_line(
            f"[[file:{self.document}][{escape_link_text(self.label)}]]", self.comment
        )

    def end(self) -> str:
        return comment_line(f"{self.label} ends here", self.comment)


def number_occurrences(fragments: Iterable[Fragment]) -> list[int]:
    """1-based occurrence of each fragment among those sharing its heading."""
    counts: dict[str, int] = {}
    numbers = []
    for fragment in fragments:
        counts[fragment.heading_label] = counts.get(fragment.heading_label, 0) + 1
        numbers.append(counts[fragment.heading_label])
    return numbers


def reference_anchor(name: str, text: str, syntax: tuple[str, str], document: str) -> str:
    """Wrap an expanded referent in its own begin/end anchor pair."""
    begin = comment_line(f"[[file:{document}::{escape_link_text(name)}]]", syntax)
    end = comment_line(f"{name} ends here", syntax)
    if text:
        return f"{begin}\n{text}\n{end}"
    return f"{begin}\n{end}"


class Annotator:
    """Renders fragments of a collection as annotated output segments."""

    def __init__(self, collection: Collection, resolver: Optional[NowebResolver] = None):
        self.collection = collection
        self.config = collection.config
        self.resolver = resolver or NowebResolver(
            collection.references, collection.config, Phase.TANGLE
        )

    def document_reference(self, target: Optional[str]) -> str:
        """Path of the document as written into links found in ``target``."""
        path = self.collection.document.path
        if path is None:
            return ""
        path = os.path.abspath(path)
        if target is not None and self.config.use_relative_file_links:
            return os.path.relpath(path, os.path.dirname(os.path.abspath(target)))
        return path

    def comment_syntax(self, fragment: Fragment) -> tuple[str, str]:
        return comment_syntax_for(fragment.language, self.config.comment_syntax)

    def noweb_wrap(self, syntax: tuple[str, str], document: str) -> Wrap:
        def wrap(name: str, referent: Fragment, text: str) -> str:
            return reference_anchor(name, text, syntax, document)

        return wrap

    def trace(self, fragment: Fragment, occurrence: int, target: str) -> TraceDescriptor:
        return TraceDescriptor(
            document=self.document_reference(target),
            heading=fragment.heading_label,
            occurrence=occurrence,
            comment=self.comment_syntax(fragment),
        )

    def segment(self, fragment: Fragment, occurrence: int, target: str) -> str:
        """The text ``fragment`` contributes to ``target``."""
        mode = fragment.comments
        trace = self.trace(fragment, occurrence, target)
        wrap = None
        if mode is CommentMode.NOWEB:
            wrap = self.noweb_wrap(trace.comment, trace.document)
        code = self.resolver.resolve(fragment, wrap)

        lines = []
        if mode.prose:
            prose = fragment.block.leading_text or fragment.heading_label
            lines.extend(
                comment_line(line.rstrip(), trace.comment).rstrip()
                for line in prose.split("\n")
            )
        if mode.links:
            lines.append(trace.begin())
            if code:
                lines.append(code)
            lines.append(trace.end())
        else:
            lines.append(code)
        return "\n".join(lines)


def tangle_ref(
    document: Document,
    name: str,
    annotate: bool = True,
    config: Optional[Config] = None,
    phase: Phase = Phase.TANGLE,
) -> str:
    """Expand the fragments registered under ``name``.

    With ``annotate`` each fragment is wrapped in noweb anchors.
    """
    collection = build_collection(document, config)
    referents = collection.references.lookup(name)
    if not referents:
        raise ReferenceExpansionError(f"no fragment named {name!r}")

    resolver = NowebResolver(collection.references, collection.config, phase)
    annotator = Annotator(collection, resolver)
    document_ref = annotator.document_reference(None)
    parts = []
    for position, referent in enumerate(referents):
        if annotate:
            syntax = annotator.comment_syntax(referent)
            text = resolver.resolve(referent, annotator.noweb_wrap(syntax, document_ref))
            text = reference_anchor(name, text, syntax, document_ref)
        else:
            text = resolver.resolve(referent)
        parts.append(text)
        if position < len(referents) - 1:
            parts.append(referent.noweb_sep)
    return "".join(parts)
