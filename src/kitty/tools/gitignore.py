"""
tools/gitignore.py — .gitignore Filtering

Hides ignored paths from the filesystem tools. A path is ignored when it, or
any directory above it, matches a rule from a .gitignore file in the working
directory or one of its subdirectories. Each file's rules are matched relative
to the directory that holds it. The .git directory is always hidden.

Rule files are read lazily, once per directory, and cached until
invalidate() is called for that directory.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Optional

import pathspec

GITIGNORE = ".gitignore"

ALWAYS_IGNORED = frozenset({".git"})


class GitignoreFilter:
    """
    Usage:
        ignore = GitignoreFilter(Path("/repo"))
        ignore.is_ignored(Path("/repo/node_modules/x.js"))   # True if listed
        for entry in ignore.walk(Path("/repo/src")):
            ...
    """

    def __init__(self, root: Path):
        self.root = root
        self._specs: dict[Path, Optional[pathspec.GitIgnoreSpec]] = {}

    def is_ignored(self, path: Path) -> bool:
        """`path` must already be resolved inside the root."""
        if path == self.root:
            return False
        parts = path.relative_to(self.root).parts
        if ALWAYS_IGNORED.intersection(parts):
            return True

        current = self.root
        for depth, part in enumerate(parts):
            current = current / part
            is_dir = depth < len(parts) - 1 or current.is_dir()
            if self._matches(current, is_dir):
                return True
        return False

    def walk(self, start: Path, show_hidden: bool = True) -> Iterator[Path]:
        """
        Yield the entries under `start` depth first, in name order. Ignored
        directories are pruned, not descended into. Symlinked directories are
        listed but not followed.
        """
        try:
            children = sorted(start.iterdir())
        except PermissionError:
            return
        for child in children:
            if not show_hidden and child.name.startswith("."):
                continue
            if self.is_ignored(child):
                continue
            yield child
            if child.is_dir() and not child.is_symlink():
                yield from self.walk(child, show_hidden)

    def invalidate(self, directory: Path) -> None:
        """Forget the cached rules of `directory` (its .gitignore changed)."""
        self._specs.pop(directory, None)

    def _matches(self, target: Path, is_dir: bool) -> bool:
        directory = target.parent
        while True:
            spec = self._spec_for(directory)
            if spec is not None:
                rel = target.relative_to(directory).as_posix()
                if spec.match_file(rel + "/" if is_dir else rel):
                    return True
            if directory == self.root:
                return False
            directory = directory.parent

    def _spec_for(self, directory: Path) -> Optional[pathspec.GitIgnoreSpec]:
        if directory not in self._specs:
            self._specs[directory] = _load_spec(directory / GITIGNORE)
        return self._specs[directory]


def _load_spec(path: Path) -> Optional[pathspec.GitIgnoreSpec]:
    if not path.is_file():
        return None
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return pathspec.GitIgnoreSpec.from_lines(lines)
