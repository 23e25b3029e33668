"""
Error taxonomy for workspace sessions and actions.

Fatal configuration errors (unknown role, unbound template variable) surface
immediately. Session errors carry the role, the turn index and the underlying
cause so callers of the action layer can diagnose a failure.
"""

from typing import Any, Iterable, Optional


class WorkbenchError(Exception):
    """Base class for all errors raised by this package."""


class TemplateNotFoundError(WorkbenchError):
    """No prompt resource exists for the requested role."""

    def __init__(self, role: str, path: str):
        super().__init__(f"No prompt template for role {role!r} (looked for {path})")
        self.role = role
        self.path = path


class UnboundVariableError(WorkbenchError):
    """A template references a variable that has no bound value."""

    def __init__(self, names: Iterable[str], role: Optional[str] = None):
        self.names = sorted(set(names))
        self.role = role
        where = f" in {role!r} template" if role else ""
        super().__init__(f"Unbound template variable(s){where}: {', '.join(self.names)}")


class UnusedVariableWarning(UserWarning):
    """A bound variable is never referenced by the template."""


class CheckFailure(WorkbenchError):
    """The checker's command sequence exited non-zero."""

    def __init__(self, result: Any):
        super().__init__(f"Check failed with exit code {result.exit_code}")
        self.result = result


class SandboxError(WorkbenchError):
    """The container runtime itself failed (not the checked code)."""


class MalformedEditError(WorkbenchError, ValueError):
    """An edit cannot be applied as proposed; the batch is rejected."""


class SessionError(WorkbenchError):
    """Failure raised from an agent session."""

    def __init__(self, message: str, role: str = "", turn: int = 0, cause: Optional[BaseException] = None):
        detail = f"[role={role} turn={turn}] {message}" if role else message
        super().__init__(detail)
        self.role = role
        self.turn = turn
        self.cause = cause


class ProtocolViolationError(SessionError):
    """The model asked for something its role does not permit."""


class TransportError(SessionError):
    """Model or sandbox transport kept failing after bounded retries."""


class NoFinalReplyError(SessionError):
    """last_reply() was called before the model produced a final answer."""


class SessionIncompleteError(SessionError):
    """The turn budget ran out before a final answer.

    The session is attached so callers can still inspect the best-known state
    (``session.workspace.current_directory()`` or ``session.last_text``).
    """

    def __init__(self, message: str, session: Any, role: str = "", turn: int = 0):
        super().__init__(message, role=role, turn=turn)
        self.session = session
