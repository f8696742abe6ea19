"""
Ignore pattern resolution for .gitignore and .ctxignore.

Combines exclusion patterns from:
1. Built-in defaults (node_modules, .git, build output, lockfiles, etc.)
2. .gitignore patterns (if enabled)
3. .ctxignore patterns (if enabled)
4. Caller-supplied extra patterns

The merged globs compile into a single ``pathspec.GitIgnoreSpec``. Every
glob is rooted at the project root unless it starts with ``**/``.
"""

from __future__ import annotations

from pathlib import Path

import pathspec
import structlog

logger = structlog.get_logger(__name__)

# Built-in excludes match at any depth
DEFAULT_EXCLUDE: tuple[str, ...] = (
    "**/node_modules/**",
    "**/.git/**",
    "**/.ctxkb/**",
    "**/dist/**",
    "**/build/**",
    "**/coverage/**",
    "**/__pycache__/**",
    "**/.next/**",
    "**/.cache/**",
    "**/*.min.js",
    "**/*.bundle.js",
    "**/.env*",
    "**/*.lock",
    "**/package-lock.json",
)

VCS_IGNORE_FILE = ".gitignore"
TOOL_IGNORE_FILE = ".ctxignore"


def gitignore_to_globs(pattern: str) -> list[str]:
    """
    Expand one gitignore line into root-relative globs.

    - ``foo/`` is a directory: ``foo`` and ``foo/**``
    - ``/foo`` is anchored to the root: no ``**/`` variant
    - ``foo`` (no slash) matches anywhere: also ``**/foo``
    - ``a/b`` contains a separator and stays as written

    Args:
        pattern: A stripped, non-comment ignore line.

    Returns:
        Glob patterns equivalent to the line.
    """
    is_directory = pattern.endswith("/")
    if is_directory:
        pattern = pattern.rstrip("/")

    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern.lstrip("/")

    if not pattern:
        return []

    floating = not anchored and "/" not in pattern

    if is_directory:
        globs = [pattern, f"{pattern}/**"]
        if floating:
            globs.extend([f"**/{pattern}", f"**/{pattern}/**"])
        return globs

    globs = [pattern]
    if floating:
        globs.append(f"**/{pattern}")
    return globs


def parse_ignore_file(path: Path) -> list[str]:
    """
    Parse an ignore file into globs.

    Blank lines and ``#`` comments are skipped. Negation lines (``!``) are
    dropped. A missing or unreadable file yields no patterns.
    """
    if not path.is_file():
        return []

    globs: list[str] = []
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read ignore file", path=str(path), error=str(e))
        return []

    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("!"):
            logger.debug("Negation patterns not supported", pattern=line)
            continue
        globs.extend(gitignore_to_globs(line))

    return globs


def _normalize(path: str) -> str:
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


class IgnoreResolver:
    """
    Path predicate built from defaults, ignore files and extra patterns.

    The predicate is a union of excludes, so pattern order has no effect.
    """

    def __init__(
        self,
        project_root: str | Path,
        extra_exclude: list[str] | None = None,
        use_vcs_ignore: bool = True,
        use_tool_ignore: bool = True,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            project_root: Root directory that all globs are anchored to.
            extra_exclude: Caller-supplied globs, appended last.
            use_vcs_ignore: Read ``.gitignore`` from the root.
            use_tool_ignore: Read ``.ctxignore`` from the root.
        """
        self.project_root = Path(project_root)
        self._patterns: list[str] = list(DEFAULT_EXCLUDE)

        if use_vcs_ignore:
            vcs = parse_ignore_file(self.project_root / VCS_IGNORE_FILE)
            if vcs:
                logger.debug("Loaded .gitignore patterns", count=len(vcs))
            self._patterns.extend(vcs)

        if use_tool_ignore:
            tool = parse_ignore_file(self.project_root / TOOL_IGNORE_FILE)
            if tool:
                logger.debug("Loaded .ctxignore patterns", count=len(tool))
            self._patterns.extend(tool)

        self._patterns.extend(extra_exclude or [])
        self._spec = pathspec.GitIgnoreSpec.from_lines(
            self._root_glob(p) for p in self._patterns
        )

    @staticmethod
    def _root_glob(glob: str) -> str:
        glob = glob.replace("\\", "/")
        if glob.startswith("**/") or glob.startswith("/"):
            return glob
        return "/" + glob

    @property
    def patterns(self) -> list[str]:
        """Merged glob list in load order."""
        return list(self._patterns)

    def is_ignored(self, relative_path: str | Path) -> bool:
        """
        Check a root-relative path against the merged patterns.

        Args:
            relative_path: Path relative to the project root.

        Returns:
            True if any exclude pattern matches.
        """
        path = _normalize(str(relative_path))
        if not path:
            return False
        return self._spec.match_file(path)

    def is_ignored_dir(self, relative_path: str | Path) -> bool:
        """Check a directory, also matching ``name/**`` style patterns."""
        path = _normalize(str(relative_path)).rstrip("/")
        if not path:
            return False
        return self._spec.match_file(path) or self._spec.match_file(path + "/")
