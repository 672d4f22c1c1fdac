"""Minimal Org reader producing a :class:`~orgtangle.document.Document`.

Only the syntax needed for tangling is understood: headings, property drawers
with ``header-args``, ``#+PROPERTY``, ``#+NAME``, ``#+HEADER``, source blocks,
comment blocks and commented-out source blocks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from orgtangle.document import CodeBlock, Document, Heading
from orgtangle.options import merge_options, parse_header_args

HEADING_RE = re.compile(r"^(\*+)(?:[ \t]+(.*?))?[ \t]*$")
KEYWORD_RE = re.compile(r"^[ \t]*#\+(\w[\w-]*):[ \t]*(.*?)[ \t]*$")
BEGIN_SRC_RE = re.compile(r"^[ \t]*#\+begin_src(?:[ \t]+(.*?))?[ \t]*$", re.I)
END_SRC_RE = re.compile(r"^[ \t]*#\+end_src[ \t]*$", re.I)
COMMENTED_BEGIN_RE = re.compile(r"^[ \t]*#[ \t]+#\+begin_src(?:[ \t]+(.*?))?[ \t]*$", re.I)
COMMENTED_END_RE = re.compile(r"^[ \t]*#[ \t]+#\+end_src[ \t]*$", re.I)
COMMENTED_LINE_RE = re.compile(r"^[ \t]*#(?:[ \t]|$)")
BEGIN_COMMENT_RE = re.compile(r"^[ \t]*#\+begin_comment\b", re.I)
END_COMMENT_RE = re.compile(r"^[ \t]*#\+end_comment\b", re.I)
DRAWER_BEGIN_RE = re.compile(r"^[ \t]*:PROPERTIES:[ \t]*$", re.I)
DRAWER_END_RE = re.compile(r"^[ \t]*:END:[ \t]*$", re.I)
PROPERTY_RE = re.compile(r"^[ \t]*:(\S+):(?:[ \t]+(.*?))?[ \t]*$")
PLANNING_RE = re.compile(r"^[ \t]*(?:SCHEDULED|DEADLINE|CLOSED):")

TODO_KEYWORDS = ("TODO", "DONE")
COMMENT_KEYWORD = "COMMENT"
ARCHIVE_TAG = "ARCHIVE"

_TAGS_RE = re.compile(r"(?:^|[ \t]+)(:[\w@#%:]+:)$")
_TODO_RE = re.compile(r"(?:%s)(?:[ \t]+|$)" % "|".join(TODO_KEYWORDS))
_PRIORITY_RE = re.compile(r"\[#[A-Za-z0-9]\](?:[ \t]+|$)")
_COMMENT_RE = re.compile(COMMENT_KEYWORD + r"(?:[ \t]+|$)")
# Statistics cookies: [1/3], [/], [50%], [%]
_COOKIE_RE = re.compile(r"[ \t]*\[(?:\d*/\d*|\d*%)\]")

ESCAPED_RE = re.compile(r"^([ \t]*),(,*(?:\*|#\+))", re.M)
_ESCAPABLE_RE = re.compile(r"^([ \t]*)(,*(?:\*|#\+))", re.M)


def unescape_code(source: str) -> str:
    """Remove one level of comma escaping (``,* x`` -> ``* x``)."""
    return ESCAPED_RE.sub(r"\1\2", source)


def escape_code(code: str) -> str:
    """Escape lines that would otherwise read as Org syntax inside a block."""
    return _ESCAPABLE_RE.sub(r"\1,\2", code)


def parse_title(title: str) -> tuple[str, bool]:
    """Return the plain heading label and whether the heading is excluded."""
    title = title.strip()
    tags: list[str] = []
    match = _TAGS_RE.search(title)
    if match:
        tags = [tag for tag in match.group(1).split(":") if tag]
        title = title[: match.start()]

    excluded = ARCHIVE_TAG in tags
    title = _COOKIE_RE.sub("", title).strip()
    for pattern in (_TODO_RE, _PRIORITY_RE):
        match = pattern.match(title)
        if match:
            title = title[match.end():]
    match = _COMMENT_RE.match(title)
    if match:
        excluded = True
        title = title[match.end():]
    return title.strip(), excluded


@dataclass
class _Section:
    label: str
    level: int
    start: int
    parent: Optional[int]
    excluded: bool
    options: dict[str, str] = field(default_factory=dict)
    language_options: dict[str, dict[str, str]] = field(default_factory=dict)
    blocks: list[CodeBlock] = field(default_factory=list)

    def freeze(self) -> Heading:
        return Heading(
            label=self.label,
            level=self.level,
            start=self.start,
            parent=self.parent,
            excluded=self.excluded,
            options=self.options,
            language_options=self.language_options,
            blocks=tuple(self.blocks),
        )


def _add_header_args(
    prop: str,
    value: str,
    options: dict[str, str],
    language_options: dict[str, dict[str, str]],
) -> None:
    """Record a ``header-args[:LANG][+]`` property or ``#+PROPERTY`` line."""
    parts = prop.lower().split(":", 1)
    if parts[0].rstrip("+") != "header-args":
        return
    args = parse_header_args(value)
    if len(parts) == 1:
        options.update(args)
    else:
        language = parts[1].rstrip("+")
        language_options.setdefault(language, {}).update(args)


def _split_begin_line(rest: str) -> tuple[str, str]:
    """Split ``lang [switches] [:args]`` into the language and the args text."""
    parts = rest.split(None, 1)
    if not parts or parts[0].startswith(":"):
        return "", rest
    remainder = parts[1] if len(parts) > 1 else ""
    match = re.search(r"(?:^|\s):", remainder)
    return parts[0], remainder[match.start():] if match else ""


def _find_end(lines: list[str], start: int, pattern: re.Pattern) -> Optional[int]:
    for index in range(start, len(lines)):
        if pattern.match(lines[index]):
            return index
    return None


def read_document(content: str, path: Optional[str] = None) -> Document:
    """Parse Org ``content`` into a document snapshot.

    Line endings are normalised to ``\\n`` as text-mode file reads do, so
    offsets refer to the normalised ``Document.text``.
    """
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    lines = content.split("\n")
    offsets = []
    position = 0
    for line in lines:
        offsets.append(position)
        position += len(line) + 1

    sections: list[_Section] = []
    preamble: list[CodeBlock] = []
    defaults: dict[str, str] = {}
    language_defaults: dict[str, dict[str, str]] = {}
    open_sections: list[int] = []

    prose: list[str] = []
    name: Optional[str] = None
    header_lines: list[str] = []
    in_comment = False

    index = 0
    while index < len(lines):
        line = lines[index]

        heading = HEADING_RE.match(line)
        if heading:
            level = len(heading.group(1))
            while open_sections and sections[open_sections[-1]].level >= level:
                open_sections.pop()
            label, excluded = parse_title(heading.group(2) or "")
            section = _Section(
                label=label,
                level=level,
                start=offsets[index],
                parent=open_sections[-1] if open_sections else None,
                excluded=excluded,
            )
            sections.append(section)
            open_sections.append(len(sections) - 1)
            prose, name, header_lines, in_comment = [], None, [], False
            index = _read_drawer(lines, index + 1, section)
            continue

        if BEGIN_COMMENT_RE.match(line):
            in_comment = True
            index += 1
            continue
        if END_COMMENT_RE.match(line):
            in_comment = False
            index += 1
            continue

        begin = BEGIN_SRC_RE.match(line)
        commented = None if begin else COMMENTED_BEGIN_RE.match(line)
        if begin or commented:
            end_pattern = END_SRC_RE if begin else COMMENTED_END_RE
            end = _find_end(lines, index + 1, end_pattern)
            if end is not None:
                language, args_text = _split_begin_line((begin or commented).group(1) or "")
                body = lines[index + 1:end]
                body_start = offsets[index + 1]
                body_end = offsets[end] - 1 if body else offsets[end]
                if commented:
                    source = "\n".join(COMMENTED_LINE_RE.sub("", l, count=1) for l in body)
                else:
                    source = content[body_start:body_end]
                options = merge_options(
                    *(parse_header_args(h) for h in header_lines),
                    parse_header_args(args_text),
                )
                block = CodeBlock(
                    language=language,
                    name=name,
                    source=source,
                    options=options,
                    start=offsets[index],
                    end=offsets[end] + len(lines[end]),
                    body_start=body_start,
                    body_end=body_end,
                    excluded=in_comment or commented is not None,
                    leading_text="\n".join(prose).strip("\n"),
                )
                (sections[-1].blocks if sections else preamble).append(block)
                prose, name, header_lines = [], None, []
                index = end + 1
                continue

        keyword = KEYWORD_RE.match(line)
        if keyword:
            key, value = keyword.group(1).lower(), keyword.group(2)
            if key == "name":
                name = value
            elif key in ("header", "headers"):
                header_lines.append(value)
            elif key == "property":
                prop, _, rest = value.partition(" ")
                _add_header_args(prop, rest, defaults, language_defaults)
            index += 1
            continue

        if not COMMENTED_LINE_RE.match(line):
            prose.append(line.rstrip())
        name, header_lines = None, []
        index += 1

    return Document(
        path=path,
        text=content,
        headings=tuple(section.freeze() for section in sections),
        preamble=tuple(preamble),
        defaults=defaults,
        language_defaults=language_defaults,
    )


def _read_drawer(lines: list[str], index: int, section: _Section) -> int:
    """Read the property drawer right below a heading, if any."""
    if index < len(lines) and PLANNING_RE.match(lines[index]):
        index += 1
    if index >= len(lines) or not DRAWER_BEGIN_RE.match(lines[index]):
        return index
    end = _find_end(lines, index + 1, DRAWER_END_RE)
    if end is None:
        return index
    for line in lines[index + 1:end]:
        match = PROPERTY_RE.match(line)
        if match:
            _add_header_args(
                match.group(1), match.group(2) or "",
                section.options, section.language_options,
            )
    return end + 1
