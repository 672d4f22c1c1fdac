"""Configuration for orgtangle.

Configuration is an explicit, immutable-by-convention value threaded through
collection, expansion and emission. It is read from ``orgtangle.toml``.
"""

from __future__ import annotations

import glob
import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from orgtangle.errors import ConfigurationError
from orgtangle.options import CommentMode, NowebMode, parse_file_mode

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "orgtangle.toml"

DEFAULT_HEADER_ARGS = {
    "tangle": "no",
    "noweb": "no",
    "comments": "no",
    "padline": "no",
    "mkdirp": "no",
}


def _default_header_args() -> dict[str, str]:
    return dict(DEFAULT_HEADER_ARGS)


@dataclass
class Config:
    """Configuration for orgtangle."""

    source_patterns: list[str] = field(default_factory=lambda: ["**/*.org"])
    header_args: dict[str, str] = field(default_factory=_default_header_args)
    use_relative_file_links: bool = True
    strict_references: bool = False
    max_expansion_depth: int = 64
    home_dir: Optional[str] = None
    extensions: dict[str, str] = field(default_factory=dict)
    comment_syntax: dict[str, tuple[str, str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.header_args = {k.lower(): str(v) for k, v in self.header_args.items()}
        # Raise ValueError early on unknown modes.
        NowebMode.parse(self.header_args.get("noweb"))
        CommentMode.parse(self.header_args.get("comments"))
        parse_file_mode(self.header_args.get("tangle-mode"))
        if self.max_expansion_depth < 1:
            raise ValueError(
                f"max_expansion_depth must be positive, got {self.max_expansion_depth}"
            )

    @property
    def comments(self) -> str:
        """Default comments mode as string."""
        return CommentMode.parse(self.header_args.get("comments")).value

    @comments.setter
    def comments(self, value: str) -> None:
        self.header_args["comments"] = CommentMode.parse(value).value

    @property
    def noweb(self) -> str:
        """Default noweb mode as string."""
        return NowebMode.parse(self.header_args.get("noweb")).value

    @noweb.setter
    def noweb(self, value: str) -> None:
        self.header_args["noweb"] = NowebMode.parse(value).value

    def with_header_args(self, **args: str) -> "Config":
        """Copy of this config with extra default header arguments.

        Keyword names use ``_`` for ``-`` (``noweb_ref`` is ``noweb-ref``).
        """
        header_args = dict(self.header_args)
        header_args.update({k.replace("_", "-"): v for k, v in args.items()})
        return replace(self, header_args=header_args)

    @staticmethod
    def from_dir(path: str) -> "Config":
        """Load configuration from a directory (looks for orgtangle.toml)."""
        candidate = Path(path) / CONFIG_FILENAME
        if candidate.is_file():
            return Config.from_file(str(candidate))
        logger.debug("No %s in %s, using defaults", CONFIG_FILENAME, path)
        return Config()

    @staticmethod
    def from_file(path: str) -> "Config":
        """Load configuration from a specific file."""
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(f"cannot read configuration {path}: {e}") from e
        try:
            return Config.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid configuration {path}: {e}") from e

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Config":
        kwargs: dict[str, Any] = {}
        extensions: dict[str, str] = {}
        comment_syntax: dict[str, tuple[str, str]] = {}

        for raw_key, value in data.items():
            key = raw_key.replace("-", "_")
            if key == "header_args":
                kwargs["header_args"] = {
                    **DEFAULT_HEADER_ARGS,
                    **{k.lower(): str(v) for k, v in value.items()},
                }
            elif key == "languages":
                for language, table in value.items():
                    table = {k.replace("-", "_"): v for k, v in table.items()}
                    if "extension" in table:
                        extensions[language.lower()] = str(table["extension"])
                    if "comment" in table:
                        comment_syntax[language.lower()] = (
                            str(table["comment"]),
                            str(table.get("comment_end", "")),
                        )
            elif key in ("source_patterns", "use_relative_file_links",
                         "strict_references", "max_expansion_depth", "home_dir"):
                kwargs[key] = value
            elif key == "version":
                continue
            else:
                logger.warning("Unknown configuration key: %s", raw_key)

        if isinstance(kwargs.get("source_patterns"), str):
            kwargs["source_patterns"] = [kwargs["source_patterns"]]
        return Config(extensions=extensions, comment_syntax=comment_syntax, **kwargs)

    def __repr__(self) -> str:
        return (
            f"Config(comments={self.comments!r}, noweb={self.noweb!r}, "
            f"source_patterns={self.source_patterns!r})"
        )


class Context:
    """A configuration bound to a base directory."""

    def __init__(self, config: Optional[Config] = None, base_dir: Optional[str] = None):
        self.base_dir = base_dir or os.getcwd()
        self.config = config if config is not None else Config.from_dir(self.base_dir)

    @staticmethod
    def default_for_dir(path: str) -> "Context":
        """Create context with default config for a specific directory."""
        return Context(config=Config(), base_dir=path)

    def source_files(self) -> list[str]:
        """Get source files matching the configuration patterns."""
        found: set[str] = set()
        for pattern in self.config.source_patterns:
            found.update(
                glob.glob(os.path.join(self.base_dir, pattern), recursive=True)
            )
        return sorted(p for p in found if os.path.isfile(p))

    def resolve_path(self, path: str) -> str:
        """Resolve a relative path against the base directory."""
        return str(Path(self.base_dir) / path)

    def __repr__(self) -> str:
        return f"Context(base_dir={self.base_dir!r}, config={self.config!r})"
