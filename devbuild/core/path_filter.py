"""Ignore rules for paths seen by the watcher and source discovery."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from pathlib import Path, PurePath

DEFAULT_IGNORED_DIRECTORIES = (
    ".git",
    ".idea",
    ".vscode",
    "node_modules",
    "vendor",
    "var",
    "__pycache__",
    ".cache",
)
DEFAULT_IGNORED_FILENAMES = (".gitignore", ".ds_store", "thumbs.db")
DEFAULT_IGNORED_EXTENSIONS = (".md", ".log", ".swp", ".tmp")
DEFAULT_IGNORED_PATTERNS = ("**/node_modules/**", "**/.git/**", "*~")


def _normalize_extension(value: str) -> str:
    value = value.strip().lower()
    return value if value.startswith(".") else f".{value}"


class PathFilter:
    """Decide whether a path is irrelevant to rebuilds.

    Directory names match whole path components only, so ``node_modules``
    ignores ``a/node_modules/b`` but not ``a/my_node_modules/b``. Name and
    extension comparisons are case-insensitive.
    """

    def __init__(
        self,
        *,
        ignored_directories: Iterable[str] = (),
        ignored_filenames: Iterable[str] = (),
        ignored_extensions: Iterable[str] = (),
        ignored_patterns: Iterable[str] = (),
        root: Path | None = None,
    ) -> None:
        self._directories = frozenset(d.strip().lower() for d in ignored_directories)
        self._filenames = frozenset(f.strip().lower() for f in ignored_filenames)
        self._extensions = frozenset(_normalize_extension(e) for e in ignored_extensions)
        self._patterns = tuple(ignored_patterns)
        self.root = root

    @classmethod
    def create_default(cls, project_dir: Path | str | None = None, *, extra_patterns: Iterable[str] = ()) -> PathFilter:
        return cls(
            ignored_directories=DEFAULT_IGNORED_DIRECTORIES,
            ignored_filenames=DEFAULT_IGNORED_FILENAMES,
            ignored_extensions=DEFAULT_IGNORED_EXTENSIONS,
            ignored_patterns=(*DEFAULT_IGNORED_PATTERNS, *extra_patterns),
            root=Path(project_dir) if project_dir is not None else None,
        )

    def ignored_filenames(self) -> tuple[str, ...]:
        return tuple(sorted(self._filenames))

    def ignored_extensions(self) -> tuple[str, ...]:
        return tuple(sorted(self._extensions))

    def ignored_directories(self) -> tuple[str, ...]:
        return tuple(sorted(self._directories))

    def should_ignore_directory(self, name: str) -> bool:
        return name.lower() in self._directories

    def should_ignore_path(self, path: str | PurePath | None) -> bool:
        if path is None:
            return False

        relative = self._relative(PurePath(path))
        parts = relative.parts
        if not parts:
            return False

        if any(self.should_ignore_directory(part) for part in parts[:-1]):
            return True

        basename = parts[-1].lower()
        if basename in self._filenames:
            return True
        if PurePath(basename).suffix in self._extensions:
            return True

        posix = relative.as_posix()
        return any(
            fnmatch.fnmatch(posix, pattern) or fnmatch.fnmatch(basename, pattern)
            for pattern in self._patterns
        )

    def _relative(self, path: PurePath) -> PurePath:
        if self.root is not None and path.is_absolute():
            try:
                return path.relative_to(self.root)
            except ValueError:
                return path
        return path
