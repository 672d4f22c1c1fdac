"""In-memory snapshot of an Org document: headings and code blocks."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Optional

from orgtangle.errors import EmissionError


@dataclass(frozen=True)
class CodeBlock:
    """A source block as written in the document."""

    language: str
    name: Optional[str]
    source: str
    options: Mapping[str, str] = field(default_factory=dict)
    start: int = 0
    end: int = 0
    body_start: int = 0
    body_end: int = 0
    excluded: bool = False
    leading_text: str = ""

    @property
    def code(self) -> str:
        """The body with one level of comma escaping removed."""
        from orgtangle.reader import unescape_code

        return unescape_code(self.source)

    def is_empty(self) -> bool:
        return not self.source.strip()

    def line_count(self) -> int:
        return len(self.source.split("\n")) if self.source else 0

    def __repr__(self) -> str:
        return (
            f"CodeBlock(language={self.language!r}, name={self.name!r}, "
            f"start={self.start}, lines={self.line_count()})"
        )


@dataclass(frozen=True)
class Heading:
    """A heading and the blocks directly below it (not in subheadings)."""

    label: str
    level: int
    start: int
    parent: Optional[int] = None
    excluded: bool = False
    options: Mapping[str, str] = field(default_factory=dict)
    language_options: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    blocks: tuple[CodeBlock, ...] = ()


@dataclass(frozen=True)
class Document:
    """A parsed document.

    ``path`` is the file the document is associated with. It is used to
    derive ``:tangle yes`` targets and is the document reference written into
    trace markers.
    """

    path: Optional[str]
    text: str
    headings: tuple[Heading, ...] = ()
    preamble: tuple[CodeBlock, ...] = ()
    defaults: Mapping[str, str] = field(default_factory=dict)
    language_defaults: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    @staticmethod
    def parse(content: str, path: Optional[str] = None) -> "Document":
        """Parse Org content directly."""
        from orgtangle.reader import read_document

        return read_document(content, path)

    @staticmethod
    def load(path: str) -> "Document":
        """Load a document from a file."""
        path = os.path.abspath(path)
        try:
            with open(path, encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise EmissionError(f"cannot read {path}: {e}") from e
        return Document.parse(content, path)

    def sections(self) -> Iterator[tuple[Optional[Heading], tuple[CodeBlock, ...]]]:
        """Yield ``(heading, blocks)`` in document order, preamble first."""
        yield None, self.preamble
        for heading in self.headings:
            yield heading, heading.blocks

    def blocks(self) -> list[CodeBlock]:
        """Get all code blocks in document order."""
        return [block for _, blocks in self.sections() for block in blocks]

    def get_by_name(self, name: str) -> list[CodeBlock]:
        return [block for block in self.blocks() if block.name == name]

    def ancestors(self, heading: Heading) -> list[Heading]:
        """The chain of headings from the outermost ancestor down to ``heading``."""
        chain = [heading]
        while chain[-1].parent is not None:
            chain.append(self.headings[chain[-1].parent])
        chain.reverse()
        return chain

    def __len__(self) -> int:
        return len(self.blocks())

    def __repr__(self) -> str:
        return (
            f"Document(path={self.path!r}, headings={len(self.headings)}, "
            f"blocks={len(self)})"
        )
