"""
Shared fixtures: a scripted model service, a recording container runtime and a
small Java project with a null-dereference bug.
"""

import os
import threading
from typing import Callable, List, Optional, Union

import pytest

from bedrock_service import GenerationResult, ToolUseBlock
from checker import CheckerEnvironment
from config import app_config
from sandbox import CheckResult, ContainerRuntime

BUGGY_APP = """package com.example;

public class App {
    public static int nameLength(String name) {
        return name.length();
    }

    public static void main(String[] args) {
        System.out.println(nameLength(null));
    }
}
"""

POM = """<project>
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.example</groupId>
  <artifactId>app</artifactId>
  <version>1.0</version>
</project>
"""


def text_reply(text: str, stop_reason: str = "end_turn") -> GenerationResult:
    return GenerationResult(
        content=text,
        content_blocks=[{"type": "text", "text": text}] if text else [],
        stop_reason=stop_reason,
    )


def tool_reply(*calls, text: str = "") -> GenerationResult:
    """calls are (name, input) pairs."""
    uses = [ToolUseBlock(id=f"toolu_{i}", name=name, input=inputs) for i, (name, inputs) in enumerate(calls, 1)]
    blocks = [{"type": "text", "text": text}] if text else []
    blocks += [{"type": "tool_use", "id": u.id, "name": u.name, "input": u.input} for u in uses]
    return GenerationResult(content=text, tool_uses=uses, content_blocks=blocks, stop_reason="tool_use")


def write_files(*edits) -> tuple:
    return ("write_files", {"edits": list(edits)})


Step = Union[GenerationResult, BaseException, Callable[[list], GenerationResult]]


class ScriptedService:
    """Stands in for BedrockService. Replays a script of replies in order.

    A step may be a GenerationResult, an exception to raise, or a callable
    receiving the messages sent.
    """

    def __init__(self, steps: Optional[List[Step]] = None, repeat_last: bool = False):
        self.steps = list(steps or [])
        self.repeat_last = repeat_last
        self.calls: List[dict] = []

    def generate_response(self, messages, system_prompt=None, model_id=None, config=None, tools=None):
        self.calls.append({"messages": messages, "system_prompt": system_prompt, "tools": tools})
        if not self.steps:
            raise AssertionError("model called more often than scripted")
        step = self.steps[0] if (self.repeat_last and len(self.steps) == 1) else self.steps.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(messages)
        return step

    @property
    def tool_names(self) -> List[str]:
        return [t["name"] for t in (self.calls[0]["tools"] if self.calls else [])]


class FakeRuntime(ContainerRuntime):
    """Records run_commands calls and answers from a judge or a result queue."""

    def __init__(self, judge: Optional[Callable[[str], CheckResult]] = None,
                 results: Optional[list] = None):
        self.judge = judge
        self.results = list(results or [])
        self.calls: List[dict] = []
        self.lock = threading.Lock()

    def run_commands(self, image, mounts, workdir, commands, source, timeout=900, cancel_event=None):
        with self.lock:
            self.calls.append({
                "image": image, "mounts": list(mounts), "workdir": workdir,
                "commands": commands, "source": source,
            })
            queued = self.results.pop(0) if self.results else None
        if isinstance(queued, BaseException):
            raise queued
        if queued is not None:
            return queued
        if self.judge is not None:
            return self.judge(source)
        return CheckResult(exit_code=0, output="BUILD SUCCESS")


def passed(output: str = "BUILD SUCCESS") -> CheckResult:
    return CheckResult(exit_code=0, output=output)


def failed(output: str = "BUILD FAILURE", exit_code: int = 1) -> CheckResult:
    return CheckResult(exit_code=exit_code, output=output)


def make_project(root) -> str:
    root = str(root)
    src = os.path.join(root, "src", "main", "java", "com", "example")
    os.makedirs(src)
    with open(os.path.join(src, "App.java"), "w") as f:
        f.write(BUGGY_APP)
    with open(os.path.join(root, "pom.xml"), "w") as f:
        f.write(POM)
    return root


APP_PATH = "src/main/java/com/example/App.java"


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(app_config, "model_retry_backoff", 0.0)
    monkeypatch.setattr(app_config, "check_retry_backoff", 0.0)


@pytest.fixture
def project(tmp_path):
    return make_project(tmp_path / "project")


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def checker(runtime):
    return CheckerEnvironment.build(
        base_image="maven:3.9.9-eclipse-temurin-17",
        cache_key="m2_cache",
        workdir="/app",
        default_commands=[["mvn", "test", "compile"]],
        runtime=runtime,
    )


@pytest.fixture
def workspace(project, checker, tmp_path):
    from workspace import Workspace

    scratch = tmp_path / "scratch"
    scratch.mkdir()
    ws = Workspace.open(project, checker, scratch_root=str(scratch))
    yield ws
    ws.discard()
