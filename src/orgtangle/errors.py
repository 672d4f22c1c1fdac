"""Exceptions raised by orgtangle."""

from __future__ import annotations


class TangleError(Exception):
    """Base class for all orgtangle errors."""


class ConfigurationError(TangleError):
    """A fragment's options cannot be resolved to a usable target.

    Fatal: the whole tangle of the document is aborted.
    """


class SelfTangleError(ConfigurationError):
    """A fragment would be tangled into the document it comes from."""


class ReferenceExpansionError(TangleError):
    """A noweb reference could not be expanded (strict mode or depth limit)."""


class EmissionError(TangleError):
    """Writing or reading a file failed."""


class DetangleMismatchError(TangleError):
    """A trace marker points at a heading or fragment that no longer matches."""
