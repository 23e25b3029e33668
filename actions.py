"""
User-facing code-maintenance actions.

Each action renders a role prompt, builds one checker environment, opens one
private workspace over the source tree and runs one agent session in it.
Nothing is ever written back to the source tree: editor results come back as
a DirectorySnapshot of the workspace.
"""

import logging
import os
from typing import Any, Awaitable, Callable, Optional, Union

from agent import AgentEvent, AgentSession, PromptTemplate, Role
from agent.roles import role_name
from checker import CheckerEnvironment
from errors import SessionIncompleteError
from sandbox import ContainerRuntime
from workspace import DirectorySnapshot, Workspace

logger = logging.getLogger(__name__)

FIND_BUGS_ASSIGNMENT = (
    "find potential bugs in the existing code, explain them and propose alternative code to fix them"
)
REFACTOR_ASSIGNMENT = "refactor the existing code to improve readability and maintainability"


class CodeActions:
    """Find bugs, refactor, or run a free-form assignment over a source tree."""

    def __init__(
        self,
        source: Union[str, os.PathLike, DirectorySnapshot] = ".",
        service: Any = None,
        runtime: Optional[ContainerRuntime] = None,
        prompts_dir: Optional[str] = None,
        max_turns: Optional[int] = None,
        on_event: Optional[Callable[[AgentEvent], Awaitable[None]]] = None,
    ):
        self.source = source if isinstance(source, DirectorySnapshot) else DirectorySnapshot.from_path(source)
        self._service = service
        self.runtime = runtime
        self.prompts_dir = prompts_dir
        self.max_turns = max_turns
        self.on_event = on_event

    @property
    def service(self) -> Any:
        # Created on first use so configuration errors surface before any AWS call
        if self._service is None:
            from bedrock_service import BedrockService
            self._service = BedrockService()
        return self._service

    def build_checker(self) -> CheckerEnvironment:
        return CheckerEnvironment.default(runtime=self.runtime)

    async def find_bugs(self) -> str:
        """Let the model find and explain potential bugs. Returns its reply."""
        session = await self.ask(Role.READER, FIND_BUGS_ASSIGNMENT)
        try:
            return session.last_reply()
        finally:
            session.workspace.discard()

    async def refactor(self) -> DirectorySnapshot:
        """Refactor for readability and maintainability. Returns the edited tree."""
        session = await self.ask(Role.EDITOR, REFACTOR_ASSIGNMENT)
        return session.workspace.current_directory()

    async def as_editor(self, assignment: str) -> AgentSession:
        """Files are edited in the workspace and a rationale file explains the changes."""
        return await self.ask(Role.EDITOR, assignment)

    async def as_reader(self, assignment: str) -> AgentSession:
        """Answer an assignment without touching any file."""
        return await self.ask(Role.READER, assignment)

    async def ask(self, role: Union[str, Role], assignment: str) -> AgentSession:
        """Run a session for role with a free-form assignment.

        Returns the finished session; use last_reply() or
        workspace.current_directory() on it, and workspace.discard() when done.
        On SessionIncompleteError the workspace is kept so the partial state
        can be inspected through the error's session.
        """
        name = role_name(role)
        # Template problems are fatal and must surface before any sandbox or model work
        prompt = PromptTemplate.load(name, self.prompts_dir).render({"assignment": assignment})

        checker = self.build_checker()
        workspace = Workspace.open(self.source, checker)
        session = AgentSession.start(
            prompt, workspace, name, self.service,
            max_turns=self.max_turns, on_event=self.on_event,
        )
        try:
            await session.run()
        except SessionIncompleteError:
            raise
        except BaseException:
            workspace.discard()
            raise
        return session
