import pytest

from agent.protocol import ActionKind, parse_edit_batch, parse_response, proposed_paths
from conftest import APP_PATH, text_reply, tool_reply, write_files
from errors import MalformedEditError, ProtocolViolationError
from tools import execute_tool, tool_definitions


# ============================================================
# Response classification
# ============================================================

def test_plain_text_is_final():
    actions = parse_response(text_reply("  All good.  "))
    assert [a.kind for a in actions] == [ActionKind.FINAL]
    assert actions[0].text == "All good."


def test_max_tokens_without_tools_is_truncated():
    actions = parse_response(text_reply("partial", stop_reason="max_tokens"))
    assert actions[0].kind == ActionKind.TRUNCATED


def test_tool_calls_win_over_text():
    result = tool_reply(
        ("read_file", {"path": "pom.xml"}),
        write_files({"path": "a.txt", "content": "a"}),
        ("run_check", {}),
        text="Let me look.",
    )
    kinds = [a.kind for a in parse_response(result)]
    assert kinds == [ActionKind.READ, ActionKind.EDIT, ActionKind.CHECK]


def test_proposed_paths():
    action = parse_response(tool_reply(write_files({"path": "a"}, {"path": "b", "content": ""})))[0]
    assert proposed_paths(action) == ["a", "b"]


# ============================================================
# Edit batches
# ============================================================

def test_replace_edits_resolve_against_current_file(workspace):
    edits = parse_edit_batch({"edits": [
        {"path": APP_PATH, "old_string": "return name.length();",
         "new_string": "return name == null ? 0 : name.length();"},
        {"path": APP_PATH, "old_string": "nameLength(null)", "new_string": "nameLength(\"x\")"},
        {"path": "README.md", "content": "# App\n"},
    ]}, workspace)
    assert [e.path for e in edits] == [APP_PATH, "README.md"]
    assert "name == null ? 0" in edits[0].content
    assert 'nameLength("x")' in edits[0].content


def test_ambiguous_replace_is_malformed(workspace):
    with pytest.raises(MalformedEditError, match="exactly once"):
        parse_edit_batch({"edits": [{"path": APP_PATH, "old_string": "public", "new_string": "private"}]},
                         workspace)


@pytest.mark.parametrize("inputs", [
    {},
    {"edits": []},
    {"edits": ["App.java"]},
    {"edits": [{"path": "a.txt"}]},
    {"edits": [{"path": "a.txt", "content": "x", "old_string": "y"}]},
    {"edits": [{"path": "a.txt", "content": 3}]},
    {"edits": [{"path": "missing.txt", "old_string": "x", "new_string": "y"}]},
    {"edits": [{"content": "x"}]},
])
def test_malformed_batches(workspace, inputs):
    with pytest.raises(MalformedEditError):
        parse_edit_batch(inputs, workspace)


def test_escaping_edit_is_a_protocol_violation(workspace):
    with pytest.raises(ProtocolViolationError):
        parse_edit_batch({"edits": [{"path": "../../etc/hosts", "content": "x"}]}, workspace)


# ============================================================
# Read-only tools
# ============================================================

def test_tool_definitions_by_capability():
    read_only = [t["name"] for t in tool_definitions(False)]
    editing = [t["name"] for t in tool_definitions(True)]
    assert read_only == ["read_file", "list_files", "run_check"]
    assert editing == read_only + ["write_files"]


def test_read_file(workspace):
    result = execute_tool("read_file", {"path": APP_PATH, "offset": 4, "limit": 2}, workspace)
    assert result.success
    assert result.output.splitlines()[1:] == [
        "     4|    public static int nameLength(String name) {",
        "     5|        return name.length();",
    ]
    assert "[11 lines total]" in result.output


def test_read_file_outside_workspace(workspace):
    result = execute_tool("read_file", {"path": "../../etc/passwd"}, workspace)
    assert not result.success
    assert "escapes" in result.error


def test_list_files_respects_gitignore(workspace):
    workspace.apply_edit(".gitignore", "*.log\n")
    workspace.apply_edit("debug.log", "noise")
    workspace.apply_edit("target/classes/App.class", "bytes")
    result = execute_tool("list_files", {}, workspace)
    assert result.success
    assert APP_PATH in result.output
    assert "pom.xml" in result.output
    assert "debug.log" not in result.output
    assert "App.class" not in result.output


def test_unknown_tool_and_bad_arguments(workspace):
    assert not execute_tool("rm_rf", {}, workspace).success
    result = execute_tool("read_file", {"file": "pom.xml"}, workspace)
    assert not result.success
    assert "Invalid arguments" in result.error
