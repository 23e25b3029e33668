""".gitignore-aware filtering helpers."""

import os
import logging
from typing import Optional, Set

import pathspec

logger = logging.getLogger(__name__)

_ALWAYS_SKIP_DIRS: Set[str] = {
    ".git", "node_modules", "__pycache__", ".venv", "venv",
    ".mypy_cache", ".pytest_cache", ".tox", ".idea", ".gradle",
    "target", "build", "dist", ".cache",
}

_ALWAYS_SKIP_EXTENSIONS: Set[str] = {
    ".pyc", ".pyo", ".so", ".dylib", ".o", ".a", ".class", ".jar",
}


def load_gitignore(root: str) -> Optional[pathspec.PathSpec]:
    """Parse root/.gitignore into a PathSpec, or None if there is none.

    Read on every call: the agent may edit .gitignore during a session.
    """
    gitignore_path = os.path.join(root, ".gitignore")
    if not os.path.isfile(gitignore_path):
        return None
    try:
        with open(gitignore_path, "r", encoding="utf-8", errors="replace") as f:
            return pathspec.PathSpec.from_lines("gitwildmatch", f)
    except (OSError, ValueError) as e:
        logger.debug(f"Failed to parse .gitignore: {e}")
        return None


def is_ignored(rel_path: str, name: str, is_dir: bool,
               gitignore_spec: Optional[pathspec.PathSpec]) -> bool:
    """Check if a path should be hidden from listings (.gitignore + hardcoded skips)."""
    if is_dir and name in _ALWAYS_SKIP_DIRS:
        return True
    if not is_dir:
        _, ext = os.path.splitext(name)
        if ext in _ALWAYS_SKIP_EXTENSIONS:
            return True
    if gitignore_spec:
        check_path = rel_path + "/" if is_dir else rel_path
        if gitignore_spec.match_file(check_path):
            return True
    return False
