"""
File discovery and hashing shared by both indexing modes.

Discovery order is a stable sort on the root-relative POSIX path so that a
checkpointed run can resume by offset into the re-discovered list.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Callable

import structlog

from ctxkb.indexing.ignore_resolver import IgnoreResolver

logger = structlog.get_logger(__name__)

LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".pyi": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".scala": "scala",
    ".md": "markdown",
    ".rst": "restructuredtext",
    ".txt": "text",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
}


def detect_language(path: str | Path) -> str:
    """Map a file extension to a language name."""
    return LANGUAGE_BY_EXTENSION.get(Path(path).suffix.lower(), "unknown")


def hash_bytes(raw: bytes) -> str:
    """SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(raw).hexdigest()


def hash_file_bytes(path: str | Path) -> str:
    """SHA-256 hex digest of a file's raw bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()


def relative_posix(path: Path, root: Path) -> str:
    return path.relative_to(root).as_posix()


def discover_files(
    root: Path,
    resolver: IgnoreResolver,
    is_supported: Callable[[Path], bool] | None = None,
) -> list[Path]:
    """
    Walk a tree and collect candidate files.

    A path is skipped when the resolver ignores its root-relative path, so
    anchored patterns only apply at the root. Directories that cannot be read
    are skipped.

    Args:
        root: Project root.
        resolver: Ignore predicate anchored at ``root``.
        is_supported: Optional extension filter (usually ``Parser.is_supported``).

    Returns:
        Absolute file paths sorted by relative path.
    """
    root = Path(root)
    found: list[tuple[str, Path]] = []

    def on_error(error: OSError) -> None:
        logger.debug("Skipping unreadable directory", path=error.filename, error=str(error))

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        current = Path(dirpath)

        kept_dirs = []
        for name in dirnames:
            rel = relative_posix(current / name, root)
            if resolver.is_ignored_dir(rel):
                continue
            kept_dirs.append(name)
        dirnames[:] = sorted(kept_dirs)

        for name in filenames:
            file_path = current / name
            rel = relative_posix(file_path, root)
            if resolver.is_ignored(rel):
                continue
            if not file_path.is_file():
                continue
            if is_supported is not None and not is_supported(file_path):
                continue
            found.append((rel, file_path))

    found.sort(key=lambda item: item[0])
    return [path for _, path in found]
