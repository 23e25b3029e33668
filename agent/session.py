"""
Agent sessions: a role-scoped, multi-turn conversation with the model, bound
to one workspace.

The turn loop is an explicit state machine:

    AWAITING_MODEL -> APPLYING_EDIT / RUNNING_CHECK -> AWAITING_MODEL -> ... -> FINAL | INCOMPLETE

Turns are strictly sequential. The only suspension points are the model call
and the sandboxed check, both run in worker threads.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from bedrock_service import BedrockError, GenerationConfig, GenerationResult
from config import app_config
from errors import (
    MalformedEditError,
    NoFinalReplyError,
    ProtocolViolationError,
    SandboxError,
    SessionError,
    SessionIncompleteError,
    TransportError,
)
from progress import ProgressReport
from sandbox import CheckResult
from tools import execute_tool, tool_definitions
from workspace import Workspace

from .events import AgentEvent
from .prompts import compose_system_prompt, describe_checker
from .protocol import ActionKind, ModelAction, parse_edit_batch, parse_response, proposed_paths
from .roles import Role, get_profile, role_name

logger = logging.getLogger(__name__)

# Substrings of transport errors worth another attempt
_RETRYABLE_KEYWORDS = (
    "timeout", "timed out", "connection", "reset by peer", "broken pipe",
    "throttl", "serviceunav", "too many requests", "endpoint url", "network",
)


class SessionState(str, Enum):
    CREATED = "created"
    AWAITING_MODEL = "awaiting_model"
    APPLYING_EDIT = "applying_edit"
    RUNNING_CHECK = "running_check"
    FINAL = "final"
    INCOMPLETE = "incomplete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AgentSession:
    """
    Drives one role-scoped conversation to completion.

    Flow:
    1. The rendered prompt is sent as the first user message
    2. Each model reply is classified: final answer, edit proposal, check request or read
    3. Edits go through Workspace.apply_edits, checks through Workspace.check
    4. Their results become the next user message; loop
    5. A plain-text reply ends the session (editor roles verify and write a rationale first)
    """

    def __init__(
        self,
        rendered_prompt: str,
        workspace: Workspace,
        role: Union[str, Role],
        service: Any,
        max_turns: Optional[int] = None,
        on_event: Optional[Callable[[AgentEvent], Awaitable[None]]] = None,
        config: Optional[GenerationConfig] = None,
    ):
        self.rendered_prompt = rendered_prompt
        self.workspace = workspace
        self.role = role_name(role)
        self.profile = get_profile(role)
        self.service = service
        self.max_turns = max_turns or app_config.max_turns
        self.on_event = on_event
        self.config = config
        self.system_prompt = compose_system_prompt(
            self.profile,
            describe_checker(workspace.checker.image, workspace.checker.default_commands),
        )
        self.tools = tool_definitions(self.profile.permits_edits)

        self.state = SessionState.CREATED
        self.turn = 0
        self.history: List[Dict[str, Any]] = []
        self.check_results: List[CheckResult] = []
        self.final_reply: Optional[str] = None
        self.last_text: str = ""
        self.report = ProgressReport().write_title(f"{self.role} session")

        self._cancel_event = threading.Event()
        self._checked_batches = 0
        self._final_repairs = 0
        self._edit_count = 0
        self._check_count = 0
        self._partial = ""
        self._empty_reprompted = False

    @classmethod
    def start(cls, rendered_prompt: str, workspace: Workspace, role: Union[str, Role],
              service: Any, **kwargs: Any) -> "AgentSession":
        return cls(rendered_prompt, workspace, role, service, **kwargs)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def last_reply(self) -> str:
        if self.final_reply is None:
            raise NoFinalReplyError("No final answer yet", role=self.role, turn=self.turn)
        return self.final_reply

    def cancel(self) -> None:
        """Stop at the next suspension point and kill any running check."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def run(self) -> "AgentSession":
        if self.state != SessionState.CREATED:
            raise RuntimeError(f"Session already ran (state={self.state.value})")
        self.history = [{"role": "user", "content": self.rendered_prompt}]
        logger.info(f"Starting {self.role} session (max {self.max_turns} turns)")
        try:
            await self._loop()
        except asyncio.CancelledError:
            self.cancel()
            self.state = SessionState.CANCELLED
            logger.info(f"{self.role} session cancelled at turn {self.turn}")
            raise
        except SessionIncompleteError:
            self.state = SessionState.INCOMPLETE
            await self._emit("incomplete", f"Turn budget of {self.max_turns} exhausted")
            raise
        except SessionError as e:
            self.state = SessionState.FAILED
            logger.error(f"{self.role} session failed at turn {self.turn}: {e}")
            await self._emit("error", str(e))
            raise
        return self

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    async def _loop(self) -> None:
        soft_limit = int(self.max_turns * 0.85)
        while self.turn < self.max_turns:
            self._raise_if_cancelled()
            self.turn += 1
            await self._emit("turn_start", data={"turn": self.turn})

            self.state = SessionState.AWAITING_MODEL
            result = await self._call_model()
            self._raise_if_cancelled()
            self.history.append({
                "role": "assistant",
                "content": result.content_blocks or [{"type": "text", "text": result.content or "(no content)"}],
            })
            if result.content.strip():
                self.last_text = result.content.strip()
                await self._emit("text", self.last_text)

            actions = parse_response(result)
            self._enforce_role(actions)

            first = actions[0]
            if first.kind == ActionKind.FINAL:
                text = (self._partial + result.content).strip() if self._partial else first.text
                if not text and not self._empty_reprompted:
                    self._empty_reprompted = True
                    self.history.append({"role": "user", "content": "Your reply was empty. Give your final answer as plain text."})
                    continue
                if await self._verification_gate():
                    self._partial = ""
                    continue
                await self._finish(text)
                return
            if first.kind == ActionKind.TRUNCATED:
                # the continuation is appended to this text when the reply completes
                self._partial += first.text
                self.history.append({"role": "user", "content": "Your reply was cut off. Continue exactly where you stopped."})
                continue

            self._partial = ""

            blocks = []
            for action in actions:
                blocks.append(await self._perform(action))
            if self.turn == soft_limit:
                blocks.append({
                    "type": "text",
                    "text": (
                        f"[SYSTEM] You have used {self.turn} of {self.max_turns} turns. "
                        "Wrap up now and give your final answer."
                    ),
                })
            self.history.append({"role": "user", "content": blocks})

        raise SessionIncompleteError(
            f"No final answer after {self.max_turns} turns", session=self, role=self.role, turn=self.turn,
        )

    def _enforce_role(self, actions: List[ModelAction]) -> None:
        if self.profile.permits_edits:
            return
        for action in actions:
            if action.kind == ActionKind.EDIT:
                paths = ", ".join(proposed_paths(action)) or "?"
                raise ProtocolViolationError(
                    f"{self.role} session proposed edits ({paths}) but the role is read-only",
                    role=self.role, turn=self.turn,
                )

    async def _perform(self, action: ModelAction) -> Dict[str, Any]:
        await self._emit("tool_call", action.name, data={"input": action.input})
        if action.kind == ActionKind.EDIT:
            content, is_error = await self._apply_edits(action)
        elif action.kind == ActionKind.CHECK:
            self.state = SessionState.RUNNING_CHECK
            result = await self._run_check()
            content, is_error = result.summary(app_config.max_tool_output_chars), False
        else:
            tool_result = execute_tool(action.name, action.input, self.workspace)
            content, is_error = tool_result.to_content(), not tool_result.success
        return {
            "type": "tool_result",
            "tool_use_id": action.tool_use_id,
            "content": content,
            "is_error": is_error,
        }

    async def _apply_edits(self, action: ModelAction):
        self.state = SessionState.APPLYING_EDIT
        self._edit_count += 1
        key = f"edit-{self._edit_count}"
        try:
            edits = parse_edit_batch(action.input, self.workspace)
            paths = self.workspace.apply_edits(edits)
        except MalformedEditError as e:
            logger.info(f"Rejected edit batch at turn {self.turn}: {e}")
            self.report.start_task(key, ", ".join(proposed_paths(action)) or "(malformed batch)", "rejected")
            await self._emit("edit_rejected", str(e))
            return f"Edit batch rejected, nothing was applied: {e}", True
        except ProtocolViolationError as e:
            raise ProtocolViolationError(str(e), role=self.role, turn=self.turn, cause=e) from e
        self.report.start_task(key, ", ".join(paths), "applied")
        await self._emit("edit_applied", ", ".join(paths), data={"paths": paths})
        return f"Applied {len(paths)} edit(s): {', '.join(paths)}", False

    async def _run_check(self) -> CheckResult:
        max_retries = app_config.check_max_retries
        backoff = app_config.check_retry_backoff
        self._check_count += 1
        key = f"check-{self._check_count}"
        self.report.start_task(key, "Run checker", "running")
        attempt = 0
        while True:
            attempt += 1
            self._raise_if_cancelled()
            try:
                result = await asyncio.get_event_loop().run_in_executor(
                    None, self.workspace.check, self._cancel_event,
                )
            except SandboxError as e:
                if attempt >= max_retries:
                    self.report.update_task(key, "sandbox error")
                    raise TransportError(
                        f"Sandbox failed after {attempt} attempt(s): {e}",
                        role=self.role, turn=self.turn, cause=e,
                    ) from e
                await self._backoff("Sandbox error", attempt, max_retries, backoff, e)
                continue
            self._raise_if_cancelled()
            if result.transient and attempt < max_retries:
                await self._backoff("Cache contention", attempt, max_retries, backoff, result.output[-200:])
                continue
            break

        self.check_results.append(result)
        self._checked_batches = len(self.workspace.edit_log)
        status = "passed" if result.passed else f"failed (exit {result.exit_code})"
        self.report.update_task(key, status)
        await self._emit("check_result", status, data={"exit_code": result.exit_code})
        return result

    async def _call_model(self) -> GenerationResult:
        max_retries = app_config.model_max_retries
        backoff = app_config.model_retry_backoff
        attempt = 0
        while True:
            attempt += 1
            try:
                messages = list(self.history)
                return await asyncio.get_event_loop().run_in_executor(
                    None,
                    lambda: self.service.generate_response(
                        messages,
                        system_prompt=self.system_prompt,
                        config=self.config,
                        tools=self.tools,
                    ),
                )
            except (BedrockError, ConnectionError, TimeoutError) as e:
                err_str = str(e).lower()
                is_retryable = (
                    getattr(e, "retryable", False)
                    or isinstance(e, (ConnectionError, TimeoutError))
                    or any(kw in err_str for kw in _RETRYABLE_KEYWORDS)
                )
                if not is_retryable or attempt >= max_retries:
                    raise TransportError(
                        f"Model call failed after {attempt} attempt(s): {e}",
                        role=self.role, turn=self.turn, cause=e,
                    ) from e
                await self._backoff("Model error", attempt, max_retries, backoff, e)

    async def _backoff(self, what: str, attempt: int, max_retries: int, base: float, detail: Any) -> None:
        wait_secs = base * (2 ** (attempt - 1))  # exponential: 2s, 4s, 8s ...
        logger.warning(f"{what} (attempt {attempt}/{max_retries}), retrying in {wait_secs:.1f}s: {detail}")
        await self._emit("retry", f"{what}, retrying", data={"attempt": attempt, "wait_seconds": wait_secs})
        await asyncio.sleep(wait_secs)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _verification_gate(self) -> bool:
        """Check the final state of an editor session. True if sent back for repair."""
        if not self.profile.verify_on_final or not self.workspace.edit_log:
            return False
        if self._checked_batches != len(self.workspace.edit_log) or not self.check_results:
            self.state = SessionState.RUNNING_CHECK
            await self._run_check()
        latest = self.check_results[-1]
        if latest.passed:
            return False
        if self._final_repairs >= app_config.final_check_repairs:
            logger.warning(f"{self.role} session finishing with a failing check (exit {latest.exit_code})")
            return False
        self._final_repairs += 1
        self.history.append({
            "role": "user",
            "content": (
                "[SYSTEM] Before finishing, the checker was run on your changes and it fails:\n\n"
                f"{latest.summary(app_config.max_tool_output_chars)}\n\n"
                "Fix the failure, or explain in your final answer why it cannot be fixed."
            ),
        })
        return True

    async def _finish(self, text: str) -> None:
        self.report.write_summary(text)
        if self.profile.permits_rationale_artifact:
            try:
                self.workspace.apply_edit(app_config.rationale_filename, self.report.render())
            except MalformedEditError as e:
                raise SessionError(
                    f"Could not write {app_config.rationale_filename}: {e}", role=self.role, turn=self.turn, cause=e,
                ) from e
        self._partial = ""
        self.final_reply = text
        self.state = SessionState.FINAL
        logger.info(f"{self.role} session finished after {self.turn} turn(s)")
        await self._emit("done", text)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise asyncio.CancelledError()

    async def _emit(self, event_type: str, content: str = "", data: Optional[Dict[str, Any]] = None) -> None:
        if self.on_event is not None:
            await self.on_event(AgentEvent(type=event_type, content=content, data=data))
