"""Block collection: option resolution, target resolution and grouping."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional

from orgtangle.config import Config
from orgtangle.document import CodeBlock, Document, Heading
from orgtangle.errors import ConfigurationError, SelfTangleError
from orgtangle.languages import extension_for
from orgtangle.options import CommentMode, NowebMode, merge_options, parse_file_mode
from orgtangle.refs import ReferenceTable

logger = logging.getLogger(__name__)

# Label used for fragments that appear before the first heading.
NO_HEADING = "No heading"


def _unescape_separator(value: str) -> str:
    return value.replace("\\n", "\n").replace("\\t", "\t")


@dataclass(frozen=True)
class Fragment:
    """A code block together with everything resolved about it."""

    block: CodeBlock
    options: Mapping[str, str]
    heading: Optional[Heading]
    heading_path: tuple[str, ...]
    index: int
    excluded: bool = False
    target: Optional[str] = None

    @property
    def language(self) -> str:
        return self.block.language

    @property
    def name(self) -> Optional[str]:
        return self.block.name

    @property
    def code(self) -> str:
        return self.block.code

    @property
    def heading_label(self) -> str:
        return self.heading.label if self.heading is not None else NO_HEADING

    @property
    def noweb(self) -> NowebMode:
        return NowebMode.parse(self.options.get("noweb"))

    @property
    def comments(self) -> CommentMode:
        return CommentMode.parse(self.options.get("comments"))

    @property
    def noweb_ref(self) -> Optional[str]:
        return self.options.get("noweb-ref") or None

    @property
    def noweb_sep(self) -> str:
        return _unescape_separator(self.options.get("noweb-sep", "\\n"))

    @property
    def reference_names(self) -> tuple[str, ...]:
        names = []
        for name in (self.name, self.noweb_ref):
            if name and name not in names:
                names.append(name)
        return tuple(names)

    @property
    def location(self) -> str:
        """Human readable heading path used in messages."""
        return " / ".join(self.heading_path) or NO_HEADING

    def __repr__(self) -> str:
        return (
            f"Fragment(index={self.index}, language={self.language!r}, "
            f"name={self.name!r}, heading={self.heading_label!r}, "
            f"target={self.target!r})"
        )


class TargetGroup(NamedTuple):
    """An output file and the fragments written to it, in document order."""

    path: str
    fragments: tuple[Fragment, ...]


@dataclass(frozen=True)
class Collection:
    document: Document
    config: Config
    fragments: tuple[Fragment, ...]
    groups: tuple[TargetGroup, ...]
    references: ReferenceTable

    def group_for(self, path: str) -> Optional[TargetGroup]:
        wanted = normalize_path(path)
        for group in self.groups:
            if normalize_path(group.path) == wanted:
                return group
        return None


def normalize_path(path: str) -> str:
    return os.path.normcase(os.path.normpath(os.path.abspath(path)))


def _expand_home(path: str, config: Config) -> str:
    if config.home_dir and (path == "~" or path.startswith("~/")):
        return config.home_dir + path[1:]
    return os.path.expanduser(path)


def resolve_target(
    block: CodeBlock,
    options: Mapping[str, str],
    document: Document,
    config: Config,
) -> Optional[str]:
    """Resolve the ``tangle`` option of a block to an absolute path or None."""
    value = options.get("tangle")
    if value is None or value.strip().lower() == "no":
        return None
    value = value.strip()
    if not value:
        raise ConfigurationError("empty :tangle value")

    if value.lower() == "yes":
        if document.path is None:
            raise ConfigurationError(
                ":tangle yes needs a document associated with a file"
            )
        if not block.language:
            raise ConfigurationError(":tangle yes on a block without a language")
        stem, _ = os.path.splitext(os.path.abspath(document.path))
        return f"{stem}.{extension_for(block.language, config.extensions)}"

    path = _expand_home(value, config)
    if not os.path.isabs(path):
        if document.path is None:
            raise ConfigurationError(
                f"relative target {value!r} needs a document associated with a file"
            )
        path = os.path.join(os.path.dirname(os.path.abspath(document.path)), path)
    return os.path.normpath(path)


def _resolve_options(
    document: Document,
    chain: list[Heading],
    block: CodeBlock,
    config: Config,
) -> dict[str, str]:
    language = block.language.lower()
    layers = [
        config.header_args,
        document.defaults,
        document.language_defaults.get(language, {}),
    ]
    for heading in chain:
        layers.append(heading.options)
        layers.append(heading.language_options.get(language, {}))
    layers.append(block.options)
    return merge_options(*layers)


def _check_options(fragment: Fragment) -> None:
    try:
        NowebMode.parse(fragment.options.get("noweb"))
        CommentMode.parse(fragment.options.get("comments"))
    except ValueError as e:
        raise ConfigurationError(f"{fragment.location}: {e}") from e
    parse_file_mode(fragment.options.get("tangle-mode"))


def build_collection(document: Document, config: Optional[Config] = None) -> Collection:
    """Resolve every block of ``document`` and group tangled ones by target.

    Raises:
        ConfigurationError: a target cannot be resolved.
        SelfTangleError: a target is the document itself.
    """
    config = config if config is not None else Config()
    own_path = normalize_path(document.path) if document.path else None

    fragments: list[Fragment] = []
    for heading, blocks in document.sections():
        chain = document.ancestors(heading) if heading is not None else []
        heading_excluded = any(h.excluded for h in chain)
        heading_path = tuple(h.label for h in chain)
        for block in blocks:
            options = _resolve_options(document, chain, block, config)
            excluded = block.excluded or heading_excluded
            fragment = Fragment(
                block=block,
                options=MappingProxyType(options),
                heading=heading,
                heading_path=heading_path,
                index=len(fragments),
                excluded=excluded,
            )
            if excluded:
                logger.debug("Skipping excluded block in %s", fragment.location)
                fragments.append(fragment)
                continue
            _check_options(fragment)
            try:
                target = resolve_target(block, options, document, config)
            except ConfigurationError as e:
                raise ConfigurationError(f"{fragment.location}: {e}") from e
            if target is not None and own_path is not None and normalize_path(target) == own_path:
                raise SelfTangleError(
                    f"{fragment.location}: refusing to tangle into the source "
                    f"document itself ({target})"
                )
            fragments.append(
                Fragment(
                    block=block,
                    options=fragment.options,
                    heading=heading,
                    heading_path=heading_path,
                    index=fragment.index,
                    target=target,
                )
            )

    grouped: dict[str, list[Fragment]] = {}
    for fragment in fragments:
        if fragment.target is not None:
            grouped.setdefault(normalize_path(fragment.target), []).append(fragment)
    groups = tuple(
        TargetGroup(members[0].target, tuple(members)) for members in grouped.values()
    )

    return Collection(
        document=document,
        config=config,
        fragments=tuple(fragments),
        groups=groups,
        references=ReferenceTable.from_fragments(fragments),
    )


def collect(document: Document, config: Optional[Config] = None) -> list[TargetGroup]:
    """Ordered list of ``(target path, fragments)`` for ``document``."""
    return list(build_collection(document, config).groups)
