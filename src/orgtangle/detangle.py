"""Detangling: mapping tangled output back to the document.

Segments of a tangled file are delimited by the link anchors written by the
annotator::

    # [[file:notes.org][Heading:1]]
    ...
    # Heading:1 ends here

With ``:comments noweb`` expanded references carry nested anchors
(``# [[file:notes.org::name]]`` ... ``# name ends here``), which lets edits be
carried back into the referenced fragments and the references restored.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from orgtangle.annotate import number_occurrences, unescape_link_text
from orgtangle.collect import Collection, Fragment, build_collection, normalize_path
from orgtangle.config import Config
from orgtangle.document import CodeBlock, Document
from orgtangle.emit import FileSystem
from orgtangle.errors import ConfigurationError, DetangleMismatchError
from orgtangle.noweb import NowebResolver, has_references
from orgtangle.options import CommentMode, NowebAction, Phase
from orgtangle.reader import ESCAPED_RE, escape_code

logger = logging.getLogger(__name__)

LINK_BEGIN_RE = re.compile(
    r"^(?P<lead>[ \t]*)(?P<start>\S+) "
    r"\[\[file:(?P<doc>[^\]]*?)(?:::(?P<search>[^\]]*))?\]\[(?P<label>(?:\\.|[^\]\\])+)\]\]"
    r"(?: (?P<end>\S+))?[ \t]*$"
)
NOWEB_BEGIN_RE = re.compile(
    r"^(?P<lead>.*?)(?P<start>\S+) "
    r"\[\[file:(?P<doc>[^\]]*?)::(?P<name>(?:\\.|[^\]\\])+)\]\]"
    r"(?: (?P<end>\S+))?[ \t]*$"
)
_INDENT_RE = re.compile(r"[ \t]*")


@dataclass(frozen=True)
class Line:
    start: int
    text: str


@dataclass
class Segment:
    """An annotated region of a tangled file."""

    label: str
    document: str
    comment: tuple[str, str]
    lead: str
    begin: int
    begin_text: str
    body_start: int
    nested: bool = False
    body_end: int = -1
    end: int = -1
    items: list[Union[Line, "Segment"]] = field(default_factory=list)

    @property
    def indent(self) -> str:
        """Prefix added to every content line of a nested segment."""
        return _INDENT_RE.match(self.lead).group() if self.nested else ""

    @property
    def heading(self) -> str:
        return self.label.rsplit(":", 1)[0]

    @property
    def occurrence(self) -> Optional[int]:
        _, _, number = self.label.rpartition(":")
        return int(number) if number.isdigit() else None

    def closes(self, text: str) -> bool:
        start, end = self.comment
        tail = f"(?: {re.escape(end)})?" if end else ""
        pattern = rf"^[ \t]*{re.escape(start)} {re.escape(self.label)} ends here{tail}[ \t]*$"
        return re.match(pattern, text) is not None

    def contains(self, offset: int) -> bool:
        return self.body_start <= offset <= self.body_end

    def flatten(self) -> list[Line]:
        """This unterminated segment as plain lines."""
        lines = [Line(self.begin, self.begin_text)]
        for item in self.items:
            lines.extend(item.flatten() if isinstance(item, Segment) else [item])
        return lines

    def children(self) -> list["Segment"]:
        return [item for item in self.items if isinstance(item, Segment)]


def _open_segment(text: str, start: int, nested: bool) -> Optional[Segment]:
    match = (NOWEB_BEGIN_RE if nested else LINK_BEGIN_RE).match(text)
    if match is None:
        return None
    return Segment(
        label=unescape_link_text(match.group("name" if nested else "label")),
        document=match.group("doc"),
        comment=(match.group("start"), match.group("end") or ""),
        lead=match.group("lead"),
        begin=start,
        begin_text=text,
        body_start=start + len(text) + 1,
        nested=nested,
    )


def parse_segments(
    content: str,
    warn: Optional[Callable[[str], None]] = None,
) -> list[Segment]:
    """Parse the annotated segments of tangled ``content``.

    Text outside of segments is ignored. Unterminated nested anchors are
    treated as ordinary lines; unterminated top-level segments are dropped.
    Lines outside of segments that look like a link marker but cannot be read
    as one are reported through ``warn`` (a logger warning by default).
    """
    warn = warn or logger.warning
    roots: list[Segment] = []
    stack: list[Segment] = []
    position = 0
    for text in content.split("\n"):
        start = position
        position += len(text) + 1

        closing = next(
            (depth for depth in range(len(stack) - 1, -1, -1) if stack[depth].closes(text)),
            None,
        )
        if closing is not None:
            while len(stack) > closing + 1:
                stack[-2].items.extend(stack.pop().flatten())
            segment = stack.pop()
            segment.end = start + len(text)
            segment.body_end = max(segment.body_start, start - 1)
            (stack[-1].items if stack else roots).append(segment)
            continue

        segment = _open_segment(text, start, nested=bool(stack))
        if segment is not None:
            stack.append(segment)
        elif stack:
            stack[-1].items.append(Line(start, text))
        elif "[[file:" in text:
            warn(f"unreadable link marker at offset {start}: {text.strip()!r}")

    if stack:
        warn(f"unterminated segment {stack[0].label!r}")
    return roots


def _strip_indent(text: str, indent: str) -> str:
    if text.startswith(indent):
        return text[len(indent):]
    common = 0
    while common < min(len(text), len(indent)) and text[common] == indent[common]:
        common += 1
    return text[common:]


@dataclass(frozen=True)
class SourcePosition:
    """A position in the document a tangled offset maps back to."""

    path: Optional[str]
    offset: int
    heading: str
    occurrence: Optional[int] = None
    name: Optional[str] = None


@dataclass
class DetangleResult:
    changes: int
    text: str
    warnings: list[DetangleMismatchError] = field(default_factory=list)
    changed: list[Fragment] = field(default_factory=list)


Entry = Union[Line, list[Segment]]


class _Detangler:
    def __init__(self, collection: Collection, generated_path: str):
        self.collection = collection
        self.generated_path = os.path.abspath(generated_path)
        self.resolver = NowebResolver(collection.references, collection.config, Phase.TANGLE)
        self.warnings: list[DetangleMismatchError] = []
        self.edits: dict[int, tuple[Fragment, str]] = {}

        self.labels: dict[str, Fragment] = {}
        group = collection.group_for(generated_path)
        if group is not None:
            for fragment, occurrence in zip(group.fragments, number_occurrences(group.fragments)):
                self.labels[f"{fragment.heading_label}:{occurrence}"] = fragment

    def warn(self, message: str) -> None:
        error = DetangleMismatchError(f"{self.generated_path}: {message}")
        logger.warning("%s", error)
        self.warnings.append(error)

    def document_path(self, segment: Segment) -> Optional[str]:
        """The document a segment was tangled from, as recorded in its marker."""
        if not segment.document:
            return self.collection.document.path
        path = os.path.expanduser(segment.document)
        if not os.path.isabs(path):
            path = os.path.join(os.path.dirname(self.generated_path), path)
        return os.path.normpath(path)

    def root_fragment(self, segment: Segment) -> Optional[Fragment]:
        own = self.collection.document.path
        recorded = self.document_path(segment)
        if own is not None and recorded is not None and normalize_path(recorded) != normalize_path(own):
            self.warn(f"segment {segment.label!r} belongs to {recorded}, not {own}")
            return None
        fragment = self.labels.get(segment.label)
        if fragment is None:
            self.warn(f"no fragment matches {segment.label!r} in {own or 'the document'}")
        return fragment

    def entries(self, segment: Segment) -> list[Entry]:
        """Items of ``segment`` with each noweb expansion grouped together."""
        entries: list[Entry] = []
        for item in segment.items:
            if isinstance(item, Segment):
                last = entries[-1] if entries else None
                size = len(self.collection.references.lookup(item.label))
                if (
                    isinstance(last, list)
                    and last[0].label == item.label
                    and len(last) < size
                    and not item.lead.strip()
                ):
                    last.append(item)
                    continue
                entries.append([item])
            else:
                entries.append(item)
        return entries

    def collapse(self, segment: Segment) -> tuple[str, list[tuple[Segment, Optional[Fragment]]]]:
        """Rebuild the fragment body of ``segment`` with references restored."""
        lines = []
        children = []
        for entry in self.entries(segment):
            if isinstance(entry, Line):
                lines.append(_strip_indent(entry.text, segment.indent))
                continue
            name = entry[0].label
            lines.append(_strip_indent(entry[0].lead, segment.indent) + f"<<{name}>>")
            referents = self.collection.references.lookup(name)
            for position, child in enumerate(entry):
                children.append((child, referents[position] if position < len(referents) else None))
        return "\n".join(lines), children

    def visit(self, segment: Segment, fragment: Fragment, noweb_comments: bool) -> None:
        code, children = self.collapse(segment)
        self.record(fragment, code, noweb_comments)
        for child, referent in children:
            if referent is None:
                self.warn(f"no fragment matches reference {child.label!r}")
                continue
            self.visit(child, referent, True)

    def record(self, fragment: Fragment, code: str, noweb_comments: bool) -> None:
        if code == fragment.code:
            return
        action = self.resolver.action(fragment)
        lossy = action is NowebAction.STRIP or (
            action is NowebAction.EXPAND and not noweb_comments
        )
        if lossy and has_references(fragment.code):
            if code != self.resolver.resolve(fragment):
                self.warn(
                    f"{fragment.location}: body has expanded noweb references; "
                    f"tangle with :comments noweb to detangle it"
                )
            return
        previous = self.edits.get(fragment.index)
        if previous is not None and previous[1] != code:
            self.warn(f"{fragment.location}: conflicting edits, keeping the first one")
            return
        self.edits[fragment.index] = (fragment, code)

    def path_to(self, roots: list[Segment], offset: int) -> list[Segment]:
        path: list[Segment] = []
        candidates = roots
        while True:
            found = next((s for s in candidates if s.contains(offset)), None)
            if found is None:
                return path
            path.append(found)
            candidates = found.children()

    def referent_of(self, parent: Segment, child: Segment) -> Optional[Fragment]:
        _, children = self.collapse(parent)
        return next((referent for seg, referent in children if seg is child), None)

    def position_in(self, segment: Segment, offset: int) -> tuple[int, int]:
        """Line and column of ``offset`` in the collapsed body of ``segment``."""
        index = -1
        for index, entry in enumerate(self.entries(segment)):
            if isinstance(entry, Line):
                if entry.start <= offset <= entry.start + len(entry.text):
                    removed = len(entry.text) - len(_strip_indent(entry.text, segment.indent))
                    return index, max(0, offset - entry.start - removed)
            elif entry[0].begin <= offset <= entry[-1].end:
                return index, len(_strip_indent(entry[0].lead, segment.indent))
        return max(index, 0), -1


def _source_offset(block: CodeBlock, text: str, line: int, column: int) -> int:
    has_lines = block.body_end > block.body_start or text.startswith("\n", block.body_start)
    if not has_lines:
        return block.body_start
    raw_lines = block.source.split("\n")
    line = min(line, len(raw_lines) - 1)
    raw = raw_lines[line]
    if column < 0:
        column = len(raw)
    escaped = ESCAPED_RE.match(raw)
    if escaped and column >= len(escaped.group(1)):
        column += 1
    column = min(column, len(raw))
    return block.body_start + sum(len(l) + 1 for l in raw_lines[:line]) + column


def apply_edits(document: Document, edits: list[tuple[Fragment, str]]) -> str:
    """Document text with the bodies of edited fragments replaced."""
    text = document.text
    for fragment, code in sorted(edits, key=lambda e: e[0].block.body_start, reverse=True):
        block = fragment.block
        has_lines = block.body_end > block.body_start or text.startswith("\n", block.body_start)
        source = escape_code(code)
        if not has_lines:
            text = text[: block.body_start] + source + "\n" + text[block.body_end:]
        elif not code and block.body_end + 1 <= len(text):
            text = text[: block.body_start] + text[block.body_end + 1:]
        else:
            text = text[: block.body_start] + source + text[block.body_end:]
    return text


def stitch(
    document: Document,
    generated_path: str,
    config: Optional[Config] = None,
    fs: Optional[FileSystem] = None,
) -> DetangleResult:
    """Compute the document text with edits from ``generated_path`` applied."""
    fs = fs or FileSystem()
    content = fs.read_text(generated_path)
    detangler = _Detangler(build_collection(document, config), generated_path)

    for segment in parse_segments(content, detangler.warn):
        fragment = detangler.root_fragment(segment)
        if fragment is not None:
            detangler.visit(segment, fragment, fragment.comments is CommentMode.NOWEB)

    edits = list(detangler.edits.values())
    return DetangleResult(
        changes=len(edits),
        text=apply_edits(document, edits),
        warnings=detangler.warnings,
        changed=[fragment for fragment, _ in edits],
    )


def detangle(
    document: Document,
    generated_path: str,
    config: Optional[Config] = None,
    fs: Optional[FileSystem] = None,
) -> int:
    """Carry edits of ``generated_path`` back into ``document``.

    The document file is written only when at least one fragment changed.
    Returns the number of changed fragments.
    """
    fs = fs or FileSystem()
    result = stitch(document, generated_path, config, fs)
    if result.changes:
        if document.path is None:
            raise ConfigurationError("cannot detangle into a document without a path")
        fs.write_text(document.path, result.text)
        logger.info(
            "Detangled %d block(s) from %s into %s",
            result.changes, generated_path, document.path,
        )
    return result.changes


def locate(
    document: Document,
    generated_path: str,
    content: str,
    offset: int,
    config: Optional[Config] = None,
) -> Optional[SourcePosition]:
    """Map ``offset`` in tangled ``content`` to a position in ``document``."""
    detangler = _Detangler(build_collection(document, config), generated_path)
    path = detangler.path_to(parse_segments(content), offset)
    if not path:
        return None

    root = path[0]
    fragment = detangler.root_fragment(root)
    for parent, child in zip(path, path[1:]):
        if fragment is None:
            break
        fragment = detangler.referent_of(parent, child)
    if fragment is None:
        return None

    innermost = path[-1]
    line, column = detangler.position_in(innermost, offset)
    return SourcePosition(
        path=detangler.document_path(root),
        offset=_source_offset(fragment.block, document.text, line, column),
        heading=fragment.heading_label,
        occurrence=root.occurrence,
        name=innermost.label if innermost.nested else None,
    )


def jump(
    document: Document,
    generated_path: str,
    offset: int,
    config: Optional[Config] = None,
    fs: Optional[FileSystem] = None,
) -> Optional[SourcePosition]:
    """Source position of character ``offset`` of a tangled file.

    Returns None when the offset is on a marker line or outside any segment.
    """
    fs = fs or FileSystem()
    return locate(document, generated_path, fs.read_text(generated_path), offset, config)


def referenced_documents(generated_path: str, fs: Optional[FileSystem] = None) -> list[str]:
    """Documents named in the top-level markers of a tangled file."""
    fs = fs or FileSystem()
    directory = os.path.dirname(os.path.abspath(generated_path))
    paths: list[str] = []
    for segment in parse_segments(fs.read_text(generated_path)):
        if not segment.document:
            continue
        path = os.path.expanduser(segment.document)
        path = os.path.normpath(os.path.join(directory, path))
        if path not in paths:
            paths.append(path)
    return paths


def jump_to_source(
    generated_path: str,
    offset: int,
    config: Optional[Config] = None,
    fs: Optional[FileSystem] = None,
) -> Optional[SourcePosition]:
    """Like :func:`jump`, opening the document recorded in the markers."""
    fs = fs or FileSystem()
    content = fs.read_text(generated_path)
    directory = os.path.dirname(os.path.abspath(generated_path))
    for segment in parse_segments(content):
        if segment.begin <= offset <= segment.end and segment.document:
            path = os.path.normpath(
                os.path.join(directory, os.path.expanduser(segment.document))
            )
            document = Document.parse(fs.read_text(path), path)
            return locate(document, generated_path, content, offset, config)
    return None
