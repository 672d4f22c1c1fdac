"""orgtangle - Literate programming for Org documents.

This package extracts source blocks from Org documents into plain files
(tangling), expanding noweb references and optionally annotating the output
with links back to the document, and carries edits of the tangled files back
into the document (detangling).

Example:
    >>> from orgtangle import Document, tangle_document, execute_transaction
    >>> doc = Document.load("notes.org")
    >>> tx = tangle_document(doc)
    >>> if not tx.is_empty():
    ...     execute_transaction(tx)
"""

__version__ = "0.1.0"

from orgtangle.annotate import TraceDescriptor, tangle_ref
from orgtangle.collect import Fragment, TargetGroup, build_collection, collect
from orgtangle.config import Config, Context
from orgtangle.detangle import (
    SourcePosition,
    detangle,
    jump,
    jump_to_source,
    referenced_documents,
    stitch,
)
from orgtangle.document import CodeBlock, Document, Heading
from orgtangle.emit import (
    FileSystem,
    Transaction,
    execute_transaction,
    tangle,
    tangle_document,
)
from orgtangle.errors import (
    ConfigurationError,
    DetangleMismatchError,
    EmissionError,
    ReferenceExpansionError,
    SelfTangleError,
    TangleError,
)
from orgtangle.options import CommentMode, NowebMode, Phase
from orgtangle.refs import ReferenceTable

__all__ = [
    "CodeBlock",
    "CommentMode",
    "Config",
    "ConfigurationError",
    "Context",
    "DetangleMismatchError",
    "Document",
    "EmissionError",
    "FileSystem",
    "Fragment",
    "Heading",
    "NowebMode",
    "Phase",
    "ReferenceExpansionError",
    "ReferenceTable",
    "SelfTangleError",
    "SourcePosition",
    "TangleError",
    "TargetGroup",
    "TraceDescriptor",
    "Transaction",
    "build_collection",
    "collect",
    "detangle",
    "execute_transaction",
    "jump",
    "jump_to_source",
    "referenced_documents",
    "stitch",
    "tangle",
    "tangle_document",
    "tangle_ref",
    "main",
]


def main() -> int:
    """CLI entry point."""
    from orgtangle.cli import main as cli_main
    return cli_main()
