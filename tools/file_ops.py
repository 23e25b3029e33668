"""Read-only file tools: read_file and list_files, confined to a workspace."""

import os
import logging
from typing import Any, List, Optional

from errors import ProtocolViolationError
from tools._common import ToolResult
from tools.gitignore import load_gitignore, is_ignored

logger = logging.getLogger(__name__)

_MAX_FULL_READ_LINES = 500
_MAX_LIST_ENTRIES = 500


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def read_file(workspace: Any, path: str, offset: Optional[int] = None,
              limit: Optional[int] = None, **kw: Any) -> ToolResult:
    """Read a file from the working copy. Returns line-numbered content."""
    try:
        full = workspace.resolve(path)
    except (ProtocolViolationError, ValueError) as e:
        return ToolResult(success=False, output="", error=str(e))
    if not os.path.isfile(full):
        return ToolResult(success=False, output="", error=f"File not found: {path}")
    try:
        with open(full, "r", encoding="utf-8", errors="replace") as f:
            lines = f.read().splitlines()
    except OSError as e:
        return ToolResult(success=False, output="", error=str(e))

    total = len(lines)
    if offset is not None or limit is not None:
        start = max((offset or 1) - 1, 0)
        end = start + (limit or total)
    elif total <= _MAX_FULL_READ_LINES:
        start, end = 0, total
    else:
        start, end = 0, _MAX_FULL_READ_LINES

    selected = lines[start:end]
    numbered = [f"{start + i + 1:6}|{line}" for i, line in enumerate(selected)]
    header = f"[{total} lines total]"
    if start > 0 or end < total:
        header += f" (showing lines {start + 1}-{start + len(selected)}; use offset/limit for more)"
    return ToolResult(success=True, output=header + "\n" + "\n".join(numbered))


def list_files(workspace: Any, path: str = ".", **kw: Any) -> ToolResult:
    """Recursively list files under path, respecting .gitignore."""
    root = workspace.root
    try:
        base = root if path in ("", ".") else workspace.resolve(path)
    except (ProtocolViolationError, ValueError) as e:
        return ToolResult(success=False, output="", error=str(e))
    if not os.path.isdir(base):
        return ToolResult(success=False, output="", error=f"Not a directory: {path}")

    spec = load_gitignore(root)
    entries: List[str] = []
    truncated = False
    for dirpath, dirnames, filenames in os.walk(base):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
        dirnames[:] = sorted(
            d for d in dirnames
            if not is_ignored(f"{rel_dir}/{d}" if rel_dir else d, d, True, spec)
        )
        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if is_ignored(rel, name, False, spec):
                continue
            size = os.path.getsize(os.path.join(dirpath, name))
            entries.append(f"  {rel} ({_format_size(size)})")
            if len(entries) >= _MAX_LIST_ENTRIES:
                truncated = True
                break
        if truncated:
            break

    if not entries:
        return ToolResult(success=True, output=f"{path}/ (empty)")
    output = f"{len(entries)} file(s):\n" + "\n".join(entries)
    if truncated:
        output += f"\n  ... [listing capped at {_MAX_LIST_ENTRIES} entries]"
    return ToolResult(success=True, output=output)
