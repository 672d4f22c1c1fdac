"""Header arguments: parsing, layered merging and the closed option modes."""

from __future__ import annotations

import enum
import logging
import re
import shlex
from typing import Mapping, Optional

from orgtangle.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    """Consumer of an expanded body."""

    TANGLE = "tangle"
    EXPORT = "export"


class NowebAction(enum.Enum):
    VERBATIM = "verbatim"
    EXPAND = "expand"
    STRIP = "strip"


class NowebMode(enum.Enum):
    NO = "no"
    YES = "yes"
    TANGLE = "tangle"
    STRIP = "strip"
    NO_EXPORT = "no-export"
    STRIP_EXPORT = "strip-export"
    STRIP_TANGLE = "strip-tangle"

    @classmethod
    def parse(cls, value: Optional[str]) -> "NowebMode":
        if value is None or not value.strip():
            return cls.NO
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"invalid noweb mode: {value!r}") from None


class CommentMode(enum.Enum):
    NONE = "none"
    LINK = "link"
    NOWEB = "noweb"
    ORG = "org"
    BOTH = "both"

    @classmethod
    def parse(cls, value: Optional[str]) -> "CommentMode":
        if value is None or not value.strip():
            return cls.NONE
        value = value.strip().lower()
        value = _COMMENT_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"invalid comments mode: {value!r}") from None

    @property
    def links(self) -> bool:
        """Whether this mode writes link anchors around each segment."""
        return self in (CommentMode.LINK, CommentMode.NOWEB, CommentMode.BOTH)

    @property
    def prose(self) -> bool:
        """Whether this mode copies the document prose as comments."""
        return self in (CommentMode.ORG, CommentMode.BOTH)


_COMMENT_ALIASES = {"no": "none", "yes": "link"}

_NOWEB_ACTIONS = {
    Phase.TANGLE: {
        NowebMode.NO: NowebAction.VERBATIM,
        NowebMode.YES: NowebAction.EXPAND,
        NowebMode.TANGLE: NowebAction.EXPAND,
        NowebMode.STRIP: NowebAction.STRIP,
        NowebMode.NO_EXPORT: NowebAction.EXPAND,
        NowebMode.STRIP_EXPORT: NowebAction.EXPAND,
        NowebMode.STRIP_TANGLE: NowebAction.STRIP,
    },
    Phase.EXPORT: {
        NowebMode.NO: NowebAction.VERBATIM,
        NowebMode.YES: NowebAction.EXPAND,
        NowebMode.TANGLE: NowebAction.VERBATIM,
        NowebMode.STRIP: NowebAction.STRIP,
        NowebMode.NO_EXPORT: NowebAction.VERBATIM,
        NowebMode.STRIP_EXPORT: NowebAction.STRIP,
        NowebMode.STRIP_TANGLE: NowebAction.VERBATIM,
    },
}


def noweb_action(mode: NowebMode, phase: Phase) -> NowebAction:
    """What to do with noweb markers of a body in ``mode`` for ``phase``."""
    return _NOWEB_ACTIONS[phase][mode]


def parse_header_args(text: str) -> dict[str, str]:
    """Parse ``:key value :key2 value2`` into a dict.

    Values may be quoted. Keys are lower-cased; a key given twice keeps the
    last value.
    """
    try:
        tokens = shlex.split(text, posix=True)
    except ValueError as e:
        raise ConfigurationError(f"malformed header arguments {text!r}: {e}") from e

    args: dict[str, str] = {}
    key: Optional[str] = None
    for token in tokens:
        if token.startswith(":") and len(token) > 1:
            key = token[1:].lower()
            args[key] = ""
        elif key is None:
            logger.debug("Ignoring header argument value without key: %r", token)
        else:
            args[key] = f"{args[key]} {token}" if args[key] else token
    return args


def merge_options(*layers: Mapping[str, str]) -> dict[str, str]:
    """Merge option layers given from the outermost to the innermost."""
    merged: dict[str, str] = {}
    for layer in layers:
        merged.update(layer)
    return merged


def is_true(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("yes", "t", "true", "1")


_MODE_RE = re.compile(r"(?:#?o|0o?)?([0-7]{3,4})\)?\s*$")


def parse_file_mode(value: Optional[str]) -> Optional[int]:
    """Parse a ``tangle-mode`` value such as ``o755`` or ``(identifier #o755)``."""
    if value is None or not value.strip():
        return None
    match = _MODE_RE.search(value.strip())
    if match is None:
        raise ConfigurationError(f"invalid tangle-mode: {value!r}")
    return int(match.group(1), 8)
