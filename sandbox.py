"""
Container runtime abstraction for running checker commands.
Supports Docker (default) and a local subprocess runtime for hosts without Docker.

Both runtimes run against a scratch copy of the source directory, so a check
never writes build output into the directory it was asked to verify.
"""

import logging
import os
import shlex
import shutil
import signal
import subprocess
import tempfile
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from errors import CheckFailure, SandboxError

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.25

# Markers of package-manager lock contention on a shared cache volume.
# A check whose output matches one of these is retried instead of reported.
_TRANSIENT_MARKERS = (
    "could not acquire lock",
    "failed to acquire lock",
    "resource temporarily unavailable",
    "lock file",
    "is locked by another process",
    "concurrent modification",
)


@dataclass(frozen=True)
class Mount:
    """A mount for a sandbox: a named cache volume or a host bind mount."""
    source: str
    target: str
    kind: str = "volume"  # volume | bind
    read_only: bool = False

    def docker_arg(self) -> str:
        spec = f"type={self.kind},source={self.source},target={self.target}"
        if self.read_only:
            spec += ",readonly"
        return spec


@dataclass(frozen=True)
class CheckResult:
    """Outcome of running the checker command sequence."""
    exit_code: int
    output: str
    commands: Tuple[Tuple[str, ...], ...] = ()
    duration: float = 0.0

    @property
    def passed(self) -> bool:
        return self.exit_code == 0

    @property
    def transient(self) -> bool:
        """True if the failure looks like cache contention rather than a real result."""
        if self.passed:
            return False
        lowered = self.output.lower()
        return any(marker in lowered for marker in _TRANSIENT_MARKERS)

    def raise_for_status(self) -> "CheckResult":
        if not self.passed:
            raise CheckFailure(self)
        return self

    def summary(self, max_chars: int = 20000) -> str:
        """Status line plus the tail of the output, capped for model consumption."""
        status = "PASSED" if self.passed else f"FAILED (exit code {self.exit_code})"
        output = self.output
        if len(output) > max_chars:
            output = f"... ({len(output) - max_chars} chars omitted)\n" + output[-max_chars:]
        return f"Check {status}\n{output}".rstrip()


def _kill_process(proc: subprocess.Popen) -> None:
    """Kill a process and its entire process group."""
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGTERM)
    except (ProcessLookupError, OSError):
        pass
    try:
        proc.kill()
    except (ProcessLookupError, OSError):
        pass


def _run_process(
    argv: Sequence[str],
    cwd: str,
    timeout: int,
    cancel_event: Optional[threading.Event] = None,
    env: Optional[dict] = None,
    on_cancel=None,
) -> Tuple[str, int]:
    """Run argv with combined stdout/stderr. Returns (output, returncode).

    Timeout and cancellation both kill the process group and return -1.
    """
    try:
        proc = subprocess.Popen(
            list(argv), cwd=cwd, env=env,
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            text=True, errors="replace",
            preexec_fn=os.setsid,  # create process group for clean kill
        )
    except OSError as e:
        raise SandboxError(f"Cannot start {argv[0]!r}: {e}") from e

    deadline = time.monotonic() + timeout
    while True:
        try:
            stdout, _ = proc.communicate(timeout=_POLL_INTERVAL)
            return stdout or "", proc.returncode
        except subprocess.TimeoutExpired:
            cancelled = cancel_event is not None and cancel_event.is_set()
            if not cancelled and time.monotonic() < deadline:
                continue
            if on_cancel is not None:
                on_cancel()
            _kill_process(proc)
            try:
                stdout, _ = proc.communicate(timeout=5)
            except subprocess.TimeoutExpired:
                # a detached grandchild still holds the pipe
                logger.warning(f"Output pipe of {argv[0]!r} still open after kill; dropping remaining output")
                proc.stdout.close()
                stdout = ""
            reason = "Command cancelled" if cancelled else f"Command timed out after {timeout}s"
            return f"{stdout or ''}\n{reason}\n", -1


class ContainerRuntime(ABC):
    """Runs an ordered command sequence against a directory inside a sandbox."""

    @abstractmethod
    def run_commands(
        self,
        image: str,
        mounts: Sequence[Mount],
        workdir: str,
        commands: Sequence[Sequence[str]],
        source: str,
        timeout: int = 900,
        cancel_event: Optional[threading.Event] = None,
    ) -> CheckResult:
        """Run commands in order, stopping at the first non-zero exit.

        A failing command is a failed CheckResult. SandboxError is reserved
        for the runtime itself being unusable.
        """


# ============================================================
# Docker Runtime
# ============================================================

_SOURCE_MOUNT = "/workbench-src"


class DockerRuntime(ContainerRuntime):
    """Runs checks in a throwaway container via the docker CLI."""

    def __init__(self, docker_binary: str = "docker"):
        self.docker_binary = docker_binary

    def build_argv(
        self,
        name: str,
        image: str,
        mounts: Sequence[Mount],
        workdir: str,
        commands: Sequence[Sequence[str]],
        source: str,
    ) -> List[str]:
        script = " && ".join(
            [f"cp -a {_SOURCE_MOUNT}/. {shlex.quote(workdir)}/"]
            + [shlex.join(list(cmd)) for cmd in commands]
        )
        argv = [self.docker_binary, "run", "--rm", "--name", name]
        argv += ["--mount", Mount(os.path.abspath(source), _SOURCE_MOUNT, kind="bind", read_only=True).docker_arg()]
        for mount in mounts:
            argv += ["--mount", mount.docker_arg()]
        argv += ["-w", workdir, image, "sh", "-c", script]
        return argv

    def run_commands(self, image, mounts, workdir, commands, source, timeout=900, cancel_event=None) -> CheckResult:
        name = f"workbench-check-{uuid.uuid4().hex[:12]}"
        argv = self.build_argv(name, image, mounts, workdir, commands, source)
        logger.info(f"Running check in {image} ({name})")
        logger.debug(f"docker argv: {argv}")

        def _kill_container():
            subprocess.run([self.docker_binary, "kill", name], capture_output=True)

        started = time.monotonic()
        output, rc = _run_process(argv, cwd=os.path.abspath(source), timeout=timeout,
                                  cancel_event=cancel_event, on_cancel=_kill_container)
        if rc == 125:
            # docker run itself failed (daemon unreachable, bad image, bad mount)
            raise SandboxError(f"docker run failed: {output.strip()[-2000:]}")
        return CheckResult(
            exit_code=rc,
            output=output,
            commands=tuple(tuple(c) for c in commands),
            duration=time.monotonic() - started,
        )


# ============================================================
# Local Runtime
# ============================================================

class LocalRuntime(ContainerRuntime):
    """Runs checks as local subprocesses in a scratch copy of the source.

    The image is ignored. Named cache volumes map to directories under
    cache_root; the first one is exported as WORKBENCH_CACHE_DIR.
    """

    def __init__(self, cache_root: str):
        self.cache_root = cache_root

    def _cache_dir(self, mount: Mount) -> str:
        path = os.path.join(self.cache_root, mount.source)
        os.makedirs(path, exist_ok=True)
        return path

    def run_commands(self, image, mounts, workdir, commands, source, timeout=900, cancel_event=None) -> CheckResult:
        env = dict(os.environ)
        volumes = [m for m in mounts if m.kind == "volume"]
        if volumes:
            env["WORKBENCH_CACHE_DIR"] = self._cache_dir(volumes[0])

        scratch_root = tempfile.mkdtemp(prefix="workbench-check-")
        scratch = os.path.join(scratch_root, os.path.basename(workdir.rstrip("/")) or "app")
        started = time.monotonic()
        try:
            shutil.copytree(source, scratch, symlinks=True)
            parts: List[str] = []
            rc = 0
            for cmd in commands:
                parts.append(f"$ {shlex.join(list(cmd))}\n")
                out, rc = _run_process(cmd, cwd=scratch, timeout=timeout, cancel_event=cancel_event, env=env)
                parts.append(out)
                if rc != 0:
                    break
        finally:
            shutil.rmtree(scratch_root, ignore_errors=True)
        return CheckResult(
            exit_code=rc,
            output="".join(parts),
            commands=tuple(tuple(c) for c in commands),
            duration=time.monotonic() - started,
        )


def create_runtime(kind: str, docker_binary: str = "docker", cache_root: str = "") -> ContainerRuntime:
    if kind == "docker":
        return DockerRuntime(docker_binary)
    if kind == "local":
        return LocalRuntime(cache_root or os.path.join(tempfile.gettempdir(), "workbench-cache"))
    raise ValueError(f"Unknown sandbox runtime: {kind!r} (expected 'docker' or 'local')")
