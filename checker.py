"""
Checker environments: a reusable description of the sandbox that validates a
candidate source tree (compile, test).

Building a CheckerEnvironment executes nothing. Each run_check() starts a
fresh sandbox with the named cache volume mounted at a fixed path; the volume
is keyed by purpose ("m2_cache"), not by session, so every environment built
with the same key shares it. Consistency of the cache under concurrent checks
is left to the package manager that owns it.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from config import app_config
from sandbox import CheckResult, ContainerRuntime, Mount, create_runtime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheVolume:
    """A named persistent cache. Lifetime is the runtime's, not the session's."""
    name: str

    def mount_at(self, path: str) -> Mount:
        return Mount(source=self.name, target=path, kind="volume")


@dataclass(frozen=True)
class CheckerEnvironment:
    image: str
    cache: CacheVolume
    cache_path: str
    workdir: str
    default_commands: Tuple[Tuple[str, ...], ...]
    runtime: ContainerRuntime = field(compare=False, repr=False, default=None)
    timeout: int = 900

    @classmethod
    def build(
        cls,
        base_image: str,
        cache_key: str,
        workdir: str,
        default_commands: Sequence[Sequence[str]],
        cache_path: str = "/root/.m2",
        runtime: Optional[ContainerRuntime] = None,
        timeout: Optional[int] = None,
    ) -> "CheckerEnvironment":
        if not default_commands:
            raise ValueError("A checker needs at least one command")
        commands = tuple(tuple(cmd) for cmd in default_commands)
        if any(not cmd for cmd in commands):
            raise ValueError("Checker commands must not be empty")
        return cls(
            image=base_image,
            cache=CacheVolume(cache_key),
            cache_path=cache_path,
            workdir=workdir,
            default_commands=commands,
            runtime=runtime or create_runtime(
                app_config.sandbox_runtime,
                docker_binary=app_config.docker_binary,
                cache_root=app_config.local_cache_root,
            ),
            timeout=timeout if timeout is not None else app_config.check_timeout,
        )

    @classmethod
    def default(cls, runtime: Optional[ContainerRuntime] = None) -> "CheckerEnvironment":
        """The configured checker (Maven image, m2_cache, `mvn test compile` by default)."""
        return cls.build(
            base_image=app_config.checker_image,
            cache_key=app_config.checker_cache_key,
            workdir=app_config.checker_workdir,
            default_commands=app_config.checker_commands,
            cache_path=app_config.checker_cache_path,
            runtime=runtime,
        )

    @property
    def mounts(self) -> List[Mount]:
        return [self.cache.mount_at(self.cache_path)]

    def run_check(self, directory: str, cancel_event: Optional[threading.Event] = None) -> CheckResult:
        """Run the default command sequence against directory.

        A non-zero exit is reported in the result, never raised.
        """
        result = self.runtime.run_commands(
            image=self.image,
            mounts=self.mounts,
            workdir=self.workdir,
            commands=self.default_commands,
            source=str(directory),
            timeout=self.timeout,
            cancel_event=cancel_event,
        )
        logger.info(f"Check on {directory}: exit={result.exit_code} ({result.duration:.1f}s)")
        return result
