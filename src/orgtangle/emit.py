"""Emission of tangled output.

All target contents are computed before anything is written. Writing goes
through a :class:`FileSystem`, which replaces each target atomically.
"""

from __future__ import annotations

import difflib
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from orgtangle.annotate import Annotator, number_occurrences
from orgtangle.collect import Collection, TargetGroup, build_collection
from orgtangle.config import Config
from orgtangle.document import Document
from orgtangle.errors import EmissionError
from orgtangle.options import is_true, parse_file_mode

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755


def _umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


class FileSystem:
    """File-system collaborator: existence checks, reads and atomic writes."""

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def read_text(self, path: str) -> str:
        try:
            with open(path, encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise EmissionError(f"cannot read {path}: {e}") from e

    def write_text(
        self,
        path: str,
        content: str,
        mode: Optional[int] = None,
        mkdirp: bool = False,
    ) -> None:
        """Replace ``path`` with ``content``."""
        directory = os.path.dirname(os.path.abspath(path))
        try:
            if mkdirp:
                os.makedirs(directory, exist_ok=True)
            elif not os.path.isdir(directory):
                raise EmissionError(
                    f"cannot write {path}: directory {directory} does not exist "
                    f"(use :mkdirp yes)"
                )
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".orgtangle-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                    f.write(content)
                if mode is not None:
                    os.chmod(tmp_path, mode)
                elif os.path.exists(path):
                    os.chmod(tmp_path, os.stat(path).st_mode & 0o7777)
                else:
                    os.chmod(tmp_path, 0o666 & ~_umask())
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise EmissionError(f"cannot write {path}: {e}") from e


@dataclass(frozen=True)
class WriteFile:
    """Replace one file with new content."""

    path: str
    content: str
    mode: Optional[int] = None
    mkdirp: bool = False

    def describe(self) -> str:
        return f"write {self.path}"

    def diff(self, fs: FileSystem) -> str:
        old = fs.read_text(self.path) if fs.exists(self.path) else ""
        return "".join(
            difflib.unified_diff(
                old.splitlines(keepends=True),
                self.content.splitlines(keepends=True),
                fromfile=f"a/{self.path}",
                tofile=f"b/{self.path}",
            )
        )


class Transaction:
    """Pending file writes, executed with :func:`execute_transaction`."""

    def __init__(self, actions: Iterable[WriteFile] = ()):
        self._actions = list(actions)

    def add(self, action: WriteFile) -> None:
        self._actions.append(action)

    def is_empty(self) -> bool:
        """Check if transaction is empty."""
        return not self._actions

    def describe(self) -> list[str]:
        """Get descriptions of all actions."""
        return [action.describe() for action in self._actions]

    def diffs(self, fs: Optional[FileSystem] = None) -> list[str]:
        """Unified diffs of the pending writes against the current files."""
        fs = fs or FileSystem()
        return [d for d in (action.diff(fs) for action in self._actions) if d]

    def __iter__(self) -> Iterator[WriteFile]:
        return iter(self._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def __repr__(self) -> str:
        return f"Transaction(actions={len(self._actions)})"


def render_group(group: TargetGroup, annotator: Annotator) -> str:
    """Full content of one target file."""
    occurrences = number_occurrences(group.fragments)
    content = ""
    for position, (fragment, occurrence) in enumerate(zip(group.fragments, occurrences)):
        segment = annotator.segment(fragment, occurrence, group.path)
        if position == 0:
            content = segment
        elif is_true(fragment.options.get("padline")):
            content += "\n\n" + segment
        else:
            content += "\n" + segment

    shebang = next(
        (f.options["shebang"] for f in group.fragments if f.options.get("shebang")),
        None,
    )
    if shebang:
        content = f"{shebang}\n{content}"
    return content + "\n"


def _file_mode(group: TargetGroup) -> Optional[int]:
    for fragment in group.fragments:
        mode = parse_file_mode(fragment.options.get("tangle-mode"))
        if mode is not None:
            return mode
    if any(f.options.get("shebang") for f in group.fragments):
        return EXECUTABLE_MODE
    return None


def plan_collection(collection: Collection) -> Transaction:
    annotator = Annotator(collection)
    transaction = Transaction()
    for group in collection.groups:
        transaction.add(
            WriteFile(
                path=group.path,
                content=render_group(group, annotator),
                mode=_file_mode(group),
                mkdirp=any(is_true(f.options.get("mkdirp")) for f in group.fragments),
            )
        )
    return transaction


def tangle_document(document: Document, config: Optional[Config] = None) -> Transaction:
    """Compute every target of ``document`` without writing anything.

    Raises:
        ConfigurationError: a target is ambiguous or is the document itself.
        ReferenceExpansionError: strict reference policy or depth limit.
    """
    return plan_collection(build_collection(document, config))


def execute_transaction(
    transaction: Transaction,
    fs: Optional[FileSystem] = None,
) -> list[str]:
    """Execute a transaction and return the written paths."""
    fs = fs or FileSystem()
    written = []
    for action in transaction:
        logger.debug("Writing %s", action.path)
        fs.write_text(action.path, action.content, mode=action.mode, mkdirp=action.mkdirp)
        written.append(action.path)
    return written


def tangle(
    document: Document,
    config: Optional[Config] = None,
    fs: Optional[FileSystem] = None,
) -> list[str]:
    """Tangle ``document`` and return the written target paths."""
    transaction = tangle_document(document, config)
    written = execute_transaction(transaction, fs)
    logger.info("Tangled %d file(s) from %s", len(written), document.path or "<document>")
    return written
