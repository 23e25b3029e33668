import os
import tempfile

import pytest

import bedrock_service
import cli
from config import app_config
from conftest import APP_PATH, FakeRuntime, ScriptedService, text_reply, tool_reply, write_files

FIX = {
    "path": APP_PATH,
    "old_string": "return name.length();",
    "new_string": "return name == null ? 0 : name.length();",
}


@pytest.fixture
def scratch(tmp_path, monkeypatch):
    """Working copies land here instead of the system temp dir."""
    path = tmp_path / "tmp"
    path.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(path))
    return path


@pytest.fixture
def model(monkeypatch):
    service = ScriptedService()
    monkeypatch.setattr(bedrock_service, "BedrockService", lambda: service)
    monkeypatch.setattr(cli, "create_runtime", lambda *args, **kwargs: FakeRuntime())
    return service


def leftovers(scratch):
    return [name for name in os.listdir(scratch) if name.startswith("workbench-ws-")]


def test_find_bugs_prints_the_reply(project, scratch, model, capsys):
    model.steps = [text_reply("nameLength dereferences a null name.")]
    assert cli.main(["--source", project, "--quiet", "find-bugs"]) == 0
    assert "nameLength dereferences a null name." in capsys.readouterr().out
    assert leftovers(scratch) == []


def test_refactor_with_output_exports_and_cleans_up(project, scratch, model, tmp_path):
    model.steps = [tool_reply(write_files(FIX)), text_reply("Guarded nameLength.")]
    dest = tmp_path / "refactored"
    assert cli.main(["--source", project, "--quiet", "refactor", "--output", str(dest)]) == 0

    with open(dest / APP_PATH) as f:
        assert "name == null" in f.read()
    assert (dest / app_config.rationale_filename).is_file()
    assert leftovers(scratch) == []


def test_refactor_without_output_keeps_the_working_copy(project, scratch, model, capsys):
    model.steps = [tool_reply(write_files(FIX)), text_reply("Guarded nameLength.")]
    assert cli.main(["--source", project, "--quiet", "refactor"]) == 0
    assert "Result left in" in capsys.readouterr().out
    assert len(leftovers(scratch)) == 1


def test_reader_ask_leaves_nothing_behind(project, scratch, model):
    model.steps = [text_reply("It is a Maven project.")]
    assert cli.main(["--source", project, "--quiet", "ask", "reader", "what is this?"]) == 0
    assert leftovers(scratch) == []


def test_unknown_role_is_an_error(project, scratch, model):
    assert cli.main(["--source", project, "--quiet", "ask", "poet", "write a sonnet"]) == 1
    assert model.calls == []
    assert leftovers(scratch) == []


def test_missing_source_is_an_error(tmp_path, model):
    assert cli.main(["--source", str(tmp_path / "nope"), "--quiet", "find-bugs"]) == 1
    assert model.calls == []


def test_turn_budget_exhausted_exits_2(project, scratch, model, tmp_path):
    model.steps = [tool_reply(write_files(FIX))]
    model.repeat_last = True
    dest = tmp_path / "partial"
    rc = cli.main(["--source", project, "--quiet", "--max-turns", "1", "refactor", "--output", str(dest)])

    assert rc == 2
    with open(dest / APP_PATH) as f:
        assert "name == null" in f.read()
    assert leftovers(scratch) == []
