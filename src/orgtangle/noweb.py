"""Expansion of ``<<name>>`` noweb references inside fragment bodies."""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from orgtangle.collect import Fragment
from orgtangle.config import Config
from orgtangle.errors import ReferenceExpansionError
from orgtangle.options import NowebAction, Phase, noweb_action
from orgtangle.refs import ReferenceTable

logger = logging.getLogger(__name__)

MARKER_RE = re.compile(r"<<(?P<name>[^\s<>](?:[^<>\n]*?[^\s<>])?)>>")
_INDENT_RE = re.compile(r"[ \t]*")

# wrap(name, referent, expanded_text) -> text inserted for that referent
Wrap = Callable[[str, Fragment, str], str]


def has_references(code: str) -> bool:
    return MARKER_RE.search(code) is not None


def strip_references(code: str) -> str:
    """Delete every marker without inserting anything."""
    return MARKER_RE.sub("", code)


class NowebResolver:
    """Expands the references of fragments against a reference table.

    Each referent is resolved with its own noweb mode for the same phase.
    Unresolved names are kept literally unless ``strict_references`` is set.
    """

    def __init__(
        self,
        references: ReferenceTable,
        config: Optional[Config] = None,
        phase: Phase = Phase.TANGLE,
    ):
        self.references = references
        self.config = config if config is not None else Config()
        self.phase = phase
        self.unresolved: list[tuple[Fragment, str]] = []

    def action(self, fragment: Fragment) -> NowebAction:
        return noweb_action(fragment.noweb, self.phase)

    def resolve(self, fragment: Fragment, wrap: Optional[Wrap] = None) -> str:
        """The body of ``fragment`` as it should appear in the output.

        Raises:
            ReferenceExpansionError: strict policy, depth limit, or a chain
                deeper than the interpreter stack allows.
        """
        try:
            return self._resolve(fragment, wrap, (fragment,))
        except RecursionError:
            raise ReferenceExpansionError(
                f"{fragment.location}: noweb expansion of "
                f"{fragment.name or fragment.noweb_ref or 'block'} exhausted the "
                f"interpreter stack before max_expansion_depth "
                f"({self.config.max_expansion_depth}) was reached"
            ) from None

    def _resolve(self, fragment: Fragment, wrap: Optional[Wrap], chain: tuple[Fragment, ...]) -> str:
        action = self.action(fragment)
        if action is NowebAction.VERBATIM:
            return fragment.code
        if action is NowebAction.STRIP:
            return strip_references(fragment.code)
        return "\n".join(
            self._expand_line(line, fragment, wrap, chain)
            for line in fragment.code.split("\n")
        )

    def _expand_line(
        self,
        line: str,
        fragment: Fragment,
        wrap: Optional[Wrap],
        chain: tuple[Fragment, ...],
    ) -> str:
        if "<<" not in line:
            return line
        indent = _INDENT_RE.match(line).group()

        def replace(match: re.Match) -> str:
            name = match.group("name")
            referents = self.references.lookup(name)
            if not referents:
                return self._unresolved(fragment, name, match.group(0))
            if len(chain) > self.config.max_expansion_depth:
                trail = " -> ".join(f.name or f.noweb_ref or "?" for f in chain)
                raise ReferenceExpansionError(
                    f"{chain[0].location}: noweb expansion deeper than "
                    f"{self.config.max_expansion_depth} levels ({trail} -> {name})"
                )

            parts = []
            for position, referent in enumerate(referents):
                text = self._resolve(referent, wrap, chain + (referent,))
                if wrap is not None:
                    text = wrap(name, referent, text)
                parts.append(text)
                if position < len(referents) - 1:
                    parts.append(referent.noweb_sep)
            return "".join(parts).replace("\n", "\n" + indent)

        return MARKER_RE.sub(replace, line)

    def _unresolved(self, fragment: Fragment, name: str, literal: str) -> str:
        message = f"{fragment.location}: unresolved noweb reference {literal}"
        if self.config.strict_references:
            raise ReferenceExpansionError(message)
        logger.warning(message)
        self.unresolved.append((fragment, name))
        return literal
