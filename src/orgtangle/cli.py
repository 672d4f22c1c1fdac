"""Command-line interface for orgtangle."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from orgtangle import __version__
from orgtangle.collect import collect
from orgtangle.config import Config, Context
from orgtangle.detangle import detangle, jump_to_source, referenced_documents, stitch
from orgtangle.document import Document
from orgtangle.emit import FileSystem, execute_transaction, tangle_document
from orgtangle.errors import TangleError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def get_context(
    config_path: Optional[str],
    directory: Optional[str],
) -> Context:
    """Create a Context from CLI options."""
    base_dir = directory or os.getcwd()

    if config_path:
        config = Config.from_file(config_path)
    else:
        config = Config.from_dir(base_dir)

    return Context(config=config, base_dir=base_dir)


def _documents(context: Context, files: Sequence[str]) -> list[str]:
    if files:
        return [os.path.abspath(context.resolve_path(f)) for f in files]
    return context.source_files()


def cmd_tangle(args: argparse.Namespace) -> int:
    """Execute the tangle command."""
    try:
        context = get_context(args.config, args.directory)
        fs = FileSystem()

        written = 0
        for path in _documents(context, args.files):
            transaction = tangle_document(Document.load(path), context.config)
            if transaction.is_empty():
                logger.debug("Nothing to tangle in %s", path)
                continue

            if args.dry_run:
                print(f"{path}: would perform {len(transaction)} actions:")
                for desc in transaction.describe():
                    print(f"  {desc}")
                if args.diff:
                    for diff in transaction.diffs(fs):
                        print(diff, end="")
                continue

            written += len(execute_transaction(transaction, fs))

        if not args.dry_run:
            print(f"Tangled {written} files.")
        return 0

    except TangleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_detangle(args: argparse.Namespace) -> int:
    """Execute the detangle command."""
    try:
        context = get_context(args.config, args.directory)
        fs = FileSystem()

        changes = 0
        for generated in args.files:
            generated = os.path.abspath(context.resolve_path(generated))
            for path in referenced_documents(generated, fs):
                document = Document.load(path)
                if args.dry_run:
                    result = stitch(document, generated, context.config, fs)
                    for fragment in result.changed:
                        print(f"{path}: would update block in {fragment.location}")
                    changes += result.changes
                else:
                    changes += detangle(document, generated, context.config, fs)

        verb = "Would detangle" if args.dry_run else "Detangled"
        print(f"{verb} {changes} blocks.")
        return 0

    except TangleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_jump(args: argparse.Namespace) -> int:
    """Execute the jump command."""
    try:
        context = get_context(args.config, args.directory)
        fs = FileSystem()
        generated = os.path.abspath(context.resolve_path(args.file))

        offset = args.position
        if args.line:
            lines = fs.read_text(generated).split("\n")
            offset = sum(len(l) + 1 for l in lines[: max(args.position - 1, 0)])

        position = jump_to_source(generated, offset, context.config, fs)
        if position is None:
            print("No source block at that position.", file=sys.stderr)
            return 1

        print(f"{position.path}:{position.offset}")
        if args.verbose:
            print(f"  heading: {position.heading}")
            if position.name:
                print(f"  reference: {position.name}")
        return 0

    except TangleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Execute the status command."""
    try:
        context = get_context(args.config, args.directory)

        source_files = context.source_files()
        print(f"Source files: {len(source_files)}")

        if args.status_verbose:
            for f in source_files:
                print(f"  {f}")

        targets = []
        for path in source_files:
            targets.extend(group.path for group in collect(Document.load(path), context.config))

        print(f"\nTarget files: {len(targets)}")

        if args.status_verbose:
            for t in targets:
                print(f"  {t}")
        return 0

    except TangleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="orgtangle",
        description="orgtangle - Tangle and detangle source blocks of Org documents",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Configuration file path",
    )
    parser.add_argument(
        "-C", "--directory",
        metavar="DIR",
        help="Working directory",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # tangle
    p_tangle = subparsers.add_parser(
        "tangle",
        help="Extract source blocks from Org documents",
    )
    p_tangle.add_argument(
        "-n", "--dry-run",
        action="store_true",
        help="Show what would be done",
    )
    p_tangle.add_argument(
        "--diff",
        action="store_true",
        help="With --dry-run, show diffs against the current files",
    )
    p_tangle.add_argument(
        "files",
        nargs="*",
        metavar="FILE",
        help="Specific documents to tangle",
    )
    p_tangle.set_defaults(func=cmd_tangle)

    # detangle
    p_detangle = subparsers.add_parser(
        "detangle",
        help="Carry edits of tangled files back into their documents",
    )
    p_detangle.add_argument(
        "-n", "--dry-run",
        action="store_true",
        help="Show what would be done",
    )
    p_detangle.add_argument(
        "files",
        nargs="+",
        metavar="FILE",
        help="Tangled files to detangle",
    )
    p_detangle.set_defaults(func=cmd_detangle)

    # jump
    p_jump = subparsers.add_parser(
        "jump",
        help="Print the document position of a position in a tangled file",
    )
    p_jump.add_argument(
        "-l", "--line",
        action="store_true",
        help="POSITION is a 1-based line number instead of a character offset",
    )
    p_jump.add_argument("file", metavar="FILE", help="Tangled file")
    p_jump.add_argument("position", metavar="POSITION", type=int, help="Character offset")
    p_jump.set_defaults(func=cmd_jump)

    # status
    p_status = subparsers.add_parser(
        "status",
        help="Show documents and their targets",
    )
    p_status.add_argument(
        "-v", "--verbose",
        dest="status_verbose",
        action="store_true",
        help="Show detailed output",
    )
    p_status.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
