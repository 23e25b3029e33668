"""
Workspaces: a private working copy of a source tree bound to a checker.

The caller's directory is copied once at open(); every later write goes to the
copy. apply_edit/apply_edits are the only mutation points, and a batch is
applied all-or-nothing.
"""

import hashlib
import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from checker import CheckerEnvironment
from errors import MalformedEditError, ProtocolViolationError
from sandbox import CheckResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edit:
    """Full replacement content for one file, relative to the workspace root."""
    path: str
    content: str


@dataclass(frozen=True)
class DirectorySnapshot:
    """Read-only view of a directory tree."""
    path: str

    @classmethod
    def from_path(cls, path: Union[str, os.PathLike]) -> "DirectorySnapshot":
        full = os.path.abspath(os.fspath(path))
        if not os.path.isdir(full):
            raise NotADirectoryError(f"Not a directory: {full}")
        return cls(full)

    def files(self) -> List[str]:
        """All regular files, as sorted posix paths relative to the root."""
        out = []
        for dirpath, dirnames, filenames in os.walk(self.path):
            dirnames.sort()
            for name in filenames:
                full = os.path.join(dirpath, name)
                out.append(os.path.relpath(full, self.path).replace(os.sep, "/"))
        return sorted(out)

    def read(self, rel_path: str) -> str:
        with open(os.path.join(self.path, rel_path), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def digest(self) -> Dict[str, str]:
        """Map of relative path -> sha256 of its bytes."""
        hashes = {}
        for rel in self.files():
            with open(os.path.join(self.path, rel), "rb") as f:
                hashes[rel] = hashlib.sha256(f.read()).hexdigest()
        return hashes

    def export(self, dest: Union[str, os.PathLike]) -> "DirectorySnapshot":
        """Copy the tree to dest (which must not exist) and return a view of the copy."""
        shutil.copytree(self.path, os.fspath(dest), symlinks=True)
        return DirectorySnapshot.from_path(dest)


SourceLike = Union[str, os.PathLike, DirectorySnapshot]


class Workspace:
    """A working copy of a source snapshot paired with one checker."""

    def __init__(self, base_dir: str, root: str, checker: CheckerEnvironment, source: str):
        self._base_dir = base_dir
        self.root = root
        self.checker = checker
        self.source = source
        self.edit_log: List[Tuple[str, ...]] = []
        self._closed = False
        self._lock = threading.Lock()

    @classmethod
    def open(cls, snapshot: SourceLike, checker: CheckerEnvironment,
             scratch_root: Optional[str] = None) -> "Workspace":
        source = snapshot.path if isinstance(snapshot, DirectorySnapshot) else os.path.abspath(os.fspath(snapshot))
        if not os.path.isdir(source):
            raise NotADirectoryError(f"Source is not a directory: {source}")
        base_dir = tempfile.mkdtemp(prefix="workbench-ws-", dir=scratch_root)
        root = os.path.join(base_dir, "src")
        shutil.copytree(source, root, symlinks=True)
        logger.info(f"Opened workspace {root} from {source}")
        return cls(base_dir, root, checker, source)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def current_directory(self) -> DirectorySnapshot:
        self._ensure_open()
        return DirectorySnapshot(self.root)

    @property
    def edited_paths(self) -> Set[str]:
        return {path for batch in self.edit_log for path in batch}

    def resolve(self, path: str) -> str:
        """Absolute path for a workspace-relative path.

        Raises ProtocolViolationError if it points outside the working copy.
        """
        if not isinstance(path, str) or not path.strip():
            raise MalformedEditError("path is required")
        if os.path.isabs(path):
            raise ProtocolViolationError(f"Absolute path not allowed: {path!r}")
        full = os.path.normpath(os.path.join(self.root, path))
        real = os.path.realpath(full)
        real_root = os.path.realpath(self.root)
        if real == real_root or not real.startswith(real_root + os.sep):
            raise ProtocolViolationError(f"Path escapes the workspace: {path!r}")
        return full

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_edit(self, path: str, content: str) -> List[str]:
        return self.apply_edits([Edit(path, content)])

    def apply_edits(self, batch: Iterable[Edit]) -> List[str]:
        """Apply a batch of edits atomically. Returns the relative paths written.

        The whole batch is validated before the first write; if a write fails
        the files already written are restored.
        """
        self._ensure_open()
        edits = list(batch)
        if not edits:
            raise MalformedEditError("Edit batch is empty")

        plan: List[Tuple[str, str, Edit]] = []
        seen: Set[str] = set()
        for edit in edits:
            if not isinstance(edit.content, str):
                raise MalformedEditError(f"Content for {edit.path!r} must be a string")
            full = self.resolve(edit.path)
            rel = os.path.relpath(full, self.root).replace(os.sep, "/")
            if rel in seen:
                raise MalformedEditError(f"Path appears twice in one batch: {rel}")
            if os.path.isdir(full):
                raise MalformedEditError(f"Path is a directory: {rel}")
            seen.add(rel)
            plan.append((full, rel, edit))

        with self._lock:
            self._write_batch(plan)
            written = tuple(rel for _, rel, _ in plan)
            self.edit_log.append(written)
        logger.info(f"Applied edit batch {len(self.edit_log)}: {', '.join(written)}")
        return list(written)

    def _write_batch(self, plan: List[Tuple[str, str, Edit]]) -> None:
        backups: Dict[str, Optional[bytes]] = {}
        created_dirs: List[str] = []
        written: List[str] = []
        try:
            for full, _, edit in plan:
                if full not in backups:
                    if os.path.isfile(full):
                        with open(full, "rb") as f:
                            backups[full] = f.read()
                    else:
                        backups[full] = None
                created_dirs.extend(self._make_parents(os.path.dirname(full)))
                self._atomic_write(full, edit.content)
                written.append(full)
        except OSError as e:
            for full in reversed(written):
                original = backups.get(full)
                try:
                    if original is None:
                        os.remove(full)
                    else:
                        with open(full, "wb") as f:
                            f.write(original)
                except OSError:
                    logger.exception(f"Failed to restore {full} after aborted batch")
            for d in reversed(created_dirs):
                try:
                    os.rmdir(d)
                except OSError:
                    pass
            raise MalformedEditError(f"Could not apply edit batch: {e}") from e

    @staticmethod
    def _make_parents(directory: str) -> List[str]:
        missing = []
        while not os.path.isdir(directory):
            missing.append(directory)
            directory = os.path.dirname(directory)
        for d in reversed(missing):
            os.mkdir(d)
        return list(reversed(missing))

    @staticmethod
    def _atomic_write(full: str, content: str) -> None:
        fd, tmp = tempfile.mkstemp(prefix=".workbench-", dir=os.path.dirname(full))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            if os.path.exists(full):
                shutil.copymode(full, tmp)
            os.replace(tmp, full)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    # ------------------------------------------------------------------
    # Checking and lifecycle
    # ------------------------------------------------------------------

    def check(self, cancel_event: Optional[threading.Event] = None) -> CheckResult:
        self._ensure_open()
        return self.checker.run_check(self.root, cancel_event=cancel_event)

    def discard(self) -> None:
        """Delete the working copy. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        shutil.rmtree(self._base_dir, ignore_errors=True)
        logger.info(f"Discarded workspace {self.root}")

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Workspace has been discarded")

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, *exc) -> None:
        self.discard()
