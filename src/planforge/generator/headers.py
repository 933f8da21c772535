"""Provenance headers stamped onto generated files, chosen by file extension."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

from planforge.constants import PROVENANCE_BRAND

_BLOCK_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {
        "ts", "tsx", "js", "jsx", "mjs", "cjs",
        "css", "scss", "less",
        "java", "c", "cpp", "h", "hpp",
        "go", "rs", "swift", "kt",
    }
)  # fmt: skip
_HASH_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {"py", "rb", "sh", "bash", "zsh", "yaml", "yml", "toml"}
)
_MARKUP_EXTENSIONS: Final[frozenset[str]] = frozenset({"html", "xml", "svg"})
_SQL_EXTENSIONS: Final[frozenset[str]] = frozenset({"sql"})


def _header_lines(node_path: str) -> tuple[str, str]:
    return (
        f"Generated by {PROVENANCE_BRAND} from: {node_path}",
        "DO NOT EDIT - changes will be overwritten",
    )


def provenance_header(file_path: str, node_path: str) -> str | None:
    """Comment block naming ``node_path``; ``None`` for unknown file types."""

    extension = PurePosixPath(file_path).suffix.lstrip(".").lower()
    origin, warning = _header_lines(node_path)
    if extension in _HASH_EXTENSIONS:
        return f"# {origin}\n# {warning}\n\n"
    if extension in _SQL_EXTENSIONS:
        return f"-- {origin}\n-- {warning}\n\n"
    if extension in _BLOCK_EXTENSIONS:
        return f"/**\n * {origin}\n * {warning}\n */\n\n"
    if extension in _MARKUP_EXTENSIONS:
        return f"<!--\n * {origin}\n * {warning}\n -->\n\n"
    return None


def add_provenance_header(content: str, file_path: str, node_path: str) -> str:
    header = provenance_header(file_path, node_path)
    if header is None:
        return content
    if content.startswith("#!"):
        # Keep the interpreter line first so the file stays executable.
        shebang, _, rest = content.partition("\n")
        return f"{shebang}\n{header}{rest}"
    return header + content


__all__ = ["add_provenance_header", "provenance_header"]
