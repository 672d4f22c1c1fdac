"""Index of named fragments for noweb lookups."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Iterator

if TYPE_CHECKING:
    from orgtangle.collect import Fragment


class ReferenceTable:
    """Maps a reference name to the fragments registered under it.

    A fragment is registered under its ``#+NAME`` and its ``noweb-ref``.
    Registration order is document order. Excluded fragments are never
    registered.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, list["Fragment"]] = {}

    @classmethod
    def from_fragments(cls, fragments: Iterable["Fragment"]) -> "ReferenceTable":
        table = cls()
        for fragment in fragments:
            table.register(fragment)
        return table

    def register(self, fragment: "Fragment") -> None:
        if fragment.excluded:
            return
        for name in fragment.reference_names:
            self._by_name.setdefault(name, []).append(fragment)

    def lookup(self, name: str) -> list["Fragment"]:
        return list(self._by_name.get(name, ()))

    def names(self) -> list[str]:
        return list(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_name)

    def __len__(self) -> int:
        return len(self._by_name)

    def __repr__(self) -> str:
        return f"ReferenceTable(names={self.names()!r})"
