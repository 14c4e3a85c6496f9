"""
tools/filesystem.py — Filesystem Tools

Gives the agent file access confined to a single working directory. Paths are
resolved against that directory; anything that resolves outside it (absolute
paths elsewhere, ../ escapes, symlinks pointing out) raises ToolPathError,
which the executor records as a failed task. Paths ignored by .gitignore are
refused or skipped (see gitignore.py).

Registered tools:
  - read_file       → read a text file
  - write_file      → write/overwrite (or append to) a text file
  - list_directory  → list directory contents
  - search_files    → find files by name or by content
  - get_file_info   → size, type, timestamps and permissions of a path
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from kitty.exceptions import ToolError, ToolPathError
from kitty.tools.gitignore import GITIGNORE, GitignoreFilter
from kitty.tools.tool_registry import ToolRegistry

# Refuse to load files larger than this into the model context
_MAX_READ_BYTES = 10 * 1024 * 1024  # 10 MB

# Upper bound on entries returned by a listing
_MAX_LIST_ENTRIES = 1000

# Upper bound on lines returned by a search
_MAX_SEARCH_RESULTS = 200
_MAX_MATCH_LINE_CHARS = 200

# A filename pattern containing any of these is treated as a regex
_REGEX_CHARS = re.compile(r"[|()\[\]{}^$+?\\]")


def resolve_within(root: Path, path: str) -> Path:
    """Resolve `path` against `root`, refusing anything outside it."""
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if resolved != root and root not in resolved.parents:
        raise ToolPathError(path, str(root))
    return resolved


def register_filesystem_tools(registry: ToolRegistry, root: str | Path = ".") -> Path:
    """
    Register the filesystem tools on `registry`, bound to `root`. Returns the
    resolved root.
    """
    base = Path(root).expanduser().resolve()
    ignore = GitignoreFilter(base)

    def visible(path: str, action: str) -> Path:
        resolved = resolve_within(base, path)
        if ignore.is_ignored(resolved):
            raise ToolError(f"Cannot {action} - path is ignored by .gitignore: {path}")
        return resolved

    @registry.register(
        name="read_file",
        description=(
            "Read the contents of a text file in the working directory. "
            "Returns the file content as a string."
        ),
        category="filesystem",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file, relative to the working directory",
                },
            },
            "required": ["path"],
        },
    )
    async def read_file(path: str) -> str:
        resolved = visible(path, "read file")
        if not resolved.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if not resolved.is_file():
            raise IsADirectoryError(f"Path is not a file: {path}")
        size = resolved.stat().st_size
        if size > _MAX_READ_BYTES:
            return (
                f"[File too large to read directly: {size:,} bytes "
                f"(limit {_MAX_READ_BYTES:,} bytes).]"
            )
        return resolved.read_text(encoding="utf-8", errors="replace")

    @registry.register(
        name="write_file",
        description=(
            "Write content to a file in the working directory, creating it "
            "(and any parent directories) if it doesn't exist. Only use this "
            "when the user asks for a file to be created or changed; answers "
            "and summaries belong in the reply, not in a file."
        ),
        category="filesystem",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to write to, relative to the working directory",
                },
                "content": {
                    "type": "string",
                    "description": "Full text content of the file",
                },
                "append": {
                    "type": "boolean",
                    "description": "Append instead of overwriting (default: false)",
                    "default": False,
                },
            },
            "required": ["path", "content"],
        },
    )
    async def write_file(path: str, content: str, append: bool = False) -> str:
        if not content:
            raise ToolError("Cannot write file - content is empty")
        resolved = visible(path, "write file")
        if resolved.is_dir():
            raise IsADirectoryError(f"Path is a directory: {path}")
        resolved.parent.mkdir(parents=True, exist_ok=True)
        with resolved.open("a" if append else "w", encoding="utf-8") as f:
            f.write(content)
        if resolved.name == GITIGNORE:
            ignore.invalidate(resolved.parent)
        verb = "Appended" if append else "Written"
        return f"{verb} {len(content)} characters to {path}"

    @registry.register(
        name="list_directory",
        description=(
            "List the contents of a directory in the working directory. "
            "Directories are shown with a trailing slash. Paths ignored by "
            ".gitignore are left out. Prefer non-recursive listings."
        ),
        category="filesystem",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory to list (default: the working directory)",
                    "default": ".",
                },
                "recursive": {
                    "type": "boolean",
                    "description": "Walk subdirectories as well (default: false)",
                    "default": False,
                },
                "show_hidden": {
                    "type": "boolean",
                    "description": "Include dotfiles (default: false)",
                    "default": False,
                },
            },
            "required": [],
        },
    )
    async def list_directory(path: str = ".", recursive: bool = False, show_hidden: bool = False) -> str:
        resolved = visible(path, "list directory")
        if not resolved.exists():
            raise FileNotFoundError(f"Directory not found: {path}")
        if not resolved.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {path}")

        if recursive:
            walker = ignore.walk(resolved, show_hidden=show_hidden)
        else:
            walker = (
                child for child in sorted(resolved.iterdir())
                if (show_hidden or not child.name.startswith(".")) and not ignore.is_ignored(child)
            )

        entries = []
        truncated = False
        for entry in walker:
            if len(entries) >= _MAX_LIST_ENTRIES:
                truncated = True
                break
            rel = entry.relative_to(resolved).as_posix()
            entries.append(rel + "/" if entry.is_dir() else rel)

        return json.dumps(
            {"path": path, "entries": entries, "count": len(entries), "truncated": truncated},
            indent=2,
        )

    @registry.register(
        name="search_files",
        description=(
            "Search the working directory. search_type='filename' matches file "
            "names against a glob (*.py) or a regex (\\.(ts|tsx)$, detected "
            "automatically); search_type='content' finds lines matching a "
            "regex and returns them as path:line: text."
        ),
        category="filesystem",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {
                    "type": "string",
                    "description": "Glob or regex for filenames; regex for content",
                },
                "search_type": {
                    "type": "string",
                    "description": "'content' or 'filename'",
                    "enum": ["content", "filename"],
                },
                "path": {
                    "type": "string",
                    "description": "Directory to search in (default: the working directory)",
                    "default": ".",
                },
                "file_pattern": {
                    "type": "string",
                    "description": "Only consider files whose name matches this glob (e.g. *.md)",
                },
                "use_regex": {
                    "type": "boolean",
                    "description": "Force regex matching for filename searches",
                    "default": False,
                },
            },
            "required": ["pattern", "search_type"],
        },
    )
    async def search_files(
        pattern: str,
        search_type: str,
        path: str = ".",
        file_pattern: Optional[str] = None,
        use_regex: bool = False,
    ) -> str:
        if search_type not in ("content", "filename"):
            raise ToolError(f"search_type must be 'content' or 'filename', got '{search_type}'")
        resolved = visible(path, "search")
        if not resolved.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {path}")

        return await asyncio.to_thread(
            _search, ignore, resolved, pattern, search_type, file_pattern, use_regex
        )

    @registry.register(
        name="get_file_info",
        description=(
            "Get details about a file or directory: type, size, timestamps "
            "and permissions."
        ),
        category="filesystem",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file or directory",
                },
            },
            "required": ["path"],
        },
    )
    async def get_file_info(path: str) -> str:
        resolved = visible(path, "get file info")
        if not resolved.exists():
            raise FileNotFoundError(f"Path not found: {path}")
        st = resolved.stat()
        kind = "directory" if resolved.is_dir() else "file" if resolved.is_file() else "other"
        return json.dumps(
            {
                "path": path,
                "type": kind,
                "size": st.st_size,
                "size_human": format_bytes(st.st_size),
                "created": _iso(getattr(st, "st_birthtime", None)),
                "modified": _iso(st.st_mtime),
                "accessed": _iso(st.st_atime),
                "permissions": oct(st.st_mode & 0o777)[2:],
                "readable": os.access(resolved, os.R_OK),
                "writable": os.access(resolved, os.W_OK),
                "executable": os.access(resolved, os.X_OK),
            },
            indent=2,
        )

    return base


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _search(
    ignore: GitignoreFilter,
    start: Path,
    pattern: str,
    search_type: str,
    file_pattern: Optional[str],
    use_regex: bool,
) -> str:
    """Blocking half of search_files; runs in a worker thread."""
    by_content = search_type == "content"
    regex = None
    if by_content or use_regex or _REGEX_CHARS.search(pattern):
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise ToolError(f"Invalid search pattern '{pattern}': {e}") from e

    results: list[str] = []
    truncated = False
    for entry in ignore.walk(start):
        if not entry.is_file():
            continue
        if file_pattern and not fnmatch.fnmatch(entry.name, file_pattern):
            continue
        rel = entry.relative_to(start).as_posix()

        if not by_content:
            hit = regex.search(rel) if regex is not None else fnmatch.fnmatch(entry.name, pattern)
            if hit:
                results.append(rel)
        else:
            for lineno, line in _text_lines(entry):
                if regex.search(line):
                    results.append(f"{rel}:{lineno}: {line.strip()[:_MAX_MATCH_LINE_CHARS]}")
                    if len(results) > _MAX_SEARCH_RESULTS:
                        break

        if len(results) > _MAX_SEARCH_RESULTS:
            truncated = True
            break

    if not results:
        return "No matches found"
    text = "\n".join(results[:_MAX_SEARCH_RESULTS])
    if truncated:
        text += f"\n[Search stopped after {_MAX_SEARCH_RESULTS} matches]"
    return text


def _text_lines(path: Path):
    """Numbered lines of a text file; binary and oversized files yield nothing."""
    try:
        if path.stat().st_size > _MAX_READ_BYTES:
            return
        data = path.read_bytes()
    except OSError:
        return
    if b"\x00" in data[:8192]:
        return
    yield from enumerate(data.decode("utf-8", errors="replace").splitlines(), start=1)


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_bytes(size: int) -> str:
    """1536 → '1.5 KB'."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB", "TB"):
        value /= 1024
        if value < 1024 or unit == "TB":
            return f"{value:.1f} {unit}"
    return f"{size} B"
