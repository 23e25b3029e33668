import os
import sys
import threading
import time
from unittest import mock

import pytest

import sandbox
from checker import CacheVolume, CheckerEnvironment
from conftest import FakeRuntime, failed
from errors import CheckFailure, SandboxError
from sandbox import CheckResult, DockerRuntime, LocalRuntime, Mount, create_runtime


def py(code: str) -> list:
    return [sys.executable, "-c", code]


# ============================================================
# CheckerEnvironment
# ============================================================

def test_build_executes_nothing(runtime):
    env = CheckerEnvironment.build("img", "m2_cache", "/app", [["mvn", "test", "compile"]], runtime=runtime)
    assert runtime.calls == []
    assert env.default_commands == (("mvn", "test", "compile"),)
    assert env.mounts == [Mount(source="m2_cache", target="/root/.m2", kind="volume")]


def test_build_rejects_empty_commands(runtime):
    with pytest.raises(ValueError):
        CheckerEnvironment.build("img", "m2_cache", "/app", [], runtime=runtime)
    with pytest.raises(ValueError):
        CheckerEnvironment.build("img", "m2_cache", "/app", [[]], runtime=runtime)


def test_environments_with_same_key_share_the_cache():
    a = CheckerEnvironment.build("img", "m2_cache", "/app", [["mvn"]], runtime=FakeRuntime())
    b = CheckerEnvironment.build("img", "m2_cache", "/app", [["mvn"]], runtime=FakeRuntime())
    assert a.cache == b.cache == CacheVolume("m2_cache")
    assert a == b


def test_default_checker_uses_maven(runtime):
    env = CheckerEnvironment.default(runtime=runtime)
    assert env.image == "maven:3.9.9-eclipse-temurin-17"
    assert env.cache.name == "m2_cache"
    assert env.cache_path == "/root/.m2"
    assert env.workdir == "/app"
    assert env.default_commands == (("mvn", "test", "compile"),)


def test_run_check_passes_everything_to_runtime(checker, runtime, project):
    result = checker.run_check(project)
    assert result.passed
    call = runtime.calls[0]
    assert call["source"] == project
    assert call["workdir"] == "/app"
    assert call["image"] == "maven:3.9.9-eclipse-temurin-17"
    assert call["mounts"][0].target == "/root/.m2"


def test_failing_check_is_a_result_not_an_exception(project):
    env = CheckerEnvironment.build("img", "m2_cache", "/app", [["mvn"]], runtime=FakeRuntime(results=[failed()]))
    result = env.run_check(project)
    assert not result.passed
    with pytest.raises(CheckFailure) as exc:
        result.raise_for_status()
    assert exc.value.result is result


# ============================================================
# CheckResult
# ============================================================

def test_transient_detection():
    assert CheckResult(1, "[ERROR] Could not acquire lock(s) on /root/.m2").transient
    assert not CheckResult(1, "COMPILATION ERROR").transient
    assert not CheckResult(0, "could not acquire lock, then recovered").transient


def test_summary_truncates_from_the_front():
    result = CheckResult(2, "x" * 50 + "TAIL")
    text = result.summary(max_chars=10)
    assert text.startswith("Check FAILED (exit code 2)")
    assert text.endswith("TAIL")
    assert "chars omitted" in text
    assert CheckResult(0, "ok").summary() == "Check PASSED\nok"


# ============================================================
# Docker runtime
# ============================================================

def test_docker_argv(project):
    runtime = DockerRuntime("docker")
    argv = runtime.build_argv(
        "workbench-check-1", "maven:3.9.9-eclipse-temurin-17",
        [CacheVolume("m2_cache").mount_at("/root/.m2")], "/app",
        [("mvn", "test", "compile")], project,
    )
    assert argv[:5] == ["docker", "run", "--rm", "--name", "workbench-check-1"]
    assert f"type=bind,source={project},target=/workbench-src,readonly" in argv
    assert "type=volume,source=m2_cache,target=/root/.m2" in argv
    assert argv[argv.index("-w") + 1] == "/app"
    assert argv[-4:-1] == ["maven:3.9.9-eclipse-temurin-17", "sh", "-c"]
    assert argv[-1] == "cp -a /workbench-src/. /app/ && mvn test compile"


def test_docker_daemon_failure_is_sandbox_error(project):
    runtime = DockerRuntime("docker")
    with mock.patch.object(sandbox, "_run_process", return_value=("Cannot connect to the Docker daemon", 125)):
        with pytest.raises(SandboxError, match="Docker daemon"):
            runtime.run_commands("img", [], "/app", [("mvn",)], project)


def test_docker_build_failure_is_a_result(project):
    runtime = DockerRuntime("docker")
    with mock.patch.object(sandbox, "_run_process", return_value=("BUILD FAILURE", 1)) as run:
        result = runtime.run_commands("img", [], "/app", [("mvn", "test")], project, timeout=30)
    assert result.exit_code == 1
    assert result.commands == (("mvn", "test"),)
    assert run.call_args.kwargs["timeout"] == 30


def test_missing_binary_is_sandbox_error(project):
    runtime = DockerRuntime("/nonexistent/docker-binary")
    with pytest.raises(SandboxError):
        runtime.run_commands("img", [], "/app", [("mvn",)], project)


def test_create_runtime():
    assert isinstance(create_runtime("docker"), DockerRuntime)
    assert isinstance(create_runtime("local", cache_root="/tmp/x"), LocalRuntime)
    with pytest.raises(ValueError):
        create_runtime("podman-compose")


# ============================================================
# Local runtime
# ============================================================

@pytest.fixture
def local(tmp_path):
    return LocalRuntime(str(tmp_path / "cache"))


def test_local_runs_commands_in_order_and_stops_at_failure(local, project):
    result = local.run_commands("ignored", [], "/app", [
        py("print('first')"),
        py("import sys; print('second'); sys.exit(3)"),
        py("print('third')"),
    ], project)
    assert result.exit_code == 3
    assert "first" in result.output
    assert "second" in result.output
    assert "third" not in result.output


def test_local_check_never_writes_into_source(local, project):
    before = sorted(os.listdir(project))
    result = local.run_commands("ignored", [], "/app", [
        py("import os; os.makedirs('target'); open('target/App.class', 'w').write('x')"),
        py("import os; assert os.path.isfile('pom.xml')"),
    ], project)
    assert result.passed, result.output
    assert sorted(os.listdir(project)) == before


def test_local_check_is_idempotent(local, project):
    commands = [py("import os, sys; sys.exit(0 if not os.path.exists('marker') else 9)"),
                py("open('marker', 'w').write('1')")]
    first = local.run_commands("ignored", [], "/app", commands, project)
    second = local.run_commands("ignored", [], "/app", commands, project)
    assert first.exit_code == second.exit_code == 0


def test_local_cache_volume_persists_across_runs(local, project):
    mounts = [CacheVolume("m2_cache").mount_at("/root/.m2")]
    write = py("import os; open(os.path.join(os.environ['WORKBENCH_CACHE_DIR'], 'dep.jar'), 'w').write('jar')")
    read = py("import os, sys; sys.exit(0 if os.path.isfile(os.path.join(os.environ['WORKBENCH_CACHE_DIR'], 'dep.jar')) else 4)")
    assert local.run_commands("ignored", mounts, "/app", [write], project).passed
    assert local.run_commands("ignored", mounts, "/app", [read], project).passed
    assert os.path.isfile(os.path.join(local.cache_root, "m2_cache", "dep.jar"))


def test_local_timeout_kills_the_command(local, project):
    started = time.monotonic()
    result = local.run_commands("ignored", [], "/app", [py("import time; time.sleep(30)")], project, timeout=1)
    assert result.exit_code == -1
    assert "timed out" in result.output
    assert time.monotonic() - started < 15


def test_local_cancel_event_kills_the_command(local, project):
    cancel = threading.Event()
    cancel.set()
    result = local.run_commands("ignored", [], "/app", [py("import time; time.sleep(30)")], project,
                                cancel_event=cancel)
    assert result.exit_code == -1
    assert "cancelled" in result.output


def test_timeout_with_pipe_held_open_after_kill():
    proc = mock.Mock(pid=12345, returncode=None)
    proc.communicate.side_effect = sandbox.subprocess.TimeoutExpired("mvn", 0.25)
    with mock.patch.object(sandbox.subprocess, "Popen", return_value=proc), \
            mock.patch.object(sandbox, "_kill_process") as kill:
        output, code = sandbox._run_process(["mvn", "test"], "/tmp", timeout=0)
    kill.assert_called_once_with(proc)
    proc.stdout.close.assert_called_once()
    assert code == -1
    assert "timed out" in output
