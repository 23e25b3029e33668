"""
Turn protocol: turns a model response into the actions a session performs.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from bedrock_service import GenerationResult
from errors import MalformedEditError
from tools import RUN_CHECK_NAME, WRITE_FILES_NAME
from workspace import Edit


class ActionKind(str, Enum):
    FINAL = "final"          # plain text reply, no tool call
    EDIT = "edit"            # write_files proposal
    CHECK = "check"          # run_check request
    READ = "read"            # read-only tool (read_file, list_files, unknown names)
    TRUNCATED = "truncated"  # reply cut off by max_tokens


@dataclass
class ModelAction:
    kind: ActionKind
    tool_use_id: str = ""
    name: str = ""
    input: Dict[str, Any] = field(default_factory=dict)
    text: str = ""


def parse_response(result: GenerationResult) -> List[ModelAction]:
    """Classify a model response. Tool calls win over text."""
    if result.tool_uses:
        actions = []
        for tu in result.tool_uses:
            if tu.name == WRITE_FILES_NAME:
                kind = ActionKind.EDIT
            elif tu.name == RUN_CHECK_NAME:
                kind = ActionKind.CHECK
            else:
                kind = ActionKind.READ
            actions.append(ModelAction(kind=kind, tool_use_id=tu.id, name=tu.name, input=tu.input or {}))
        return actions
    if result.stop_reason == "max_tokens":
        return [ModelAction(kind=ActionKind.TRUNCATED, text=result.content)]
    return [ModelAction(kind=ActionKind.FINAL, text=result.content.strip())]


def proposed_paths(action: ModelAction) -> List[str]:
    edits = action.input.get("edits")
    if not isinstance(edits, list):
        return []
    return [str(e.get("path", "?")) for e in edits if isinstance(e, dict)]


def parse_edit_batch(inputs: Dict[str, Any], workspace: Any) -> List[Edit]:
    """Turn write_files input into full-content Edits.

    old_string/new_string items are resolved against the current file (or an
    earlier edit of the same file in this batch). Any malformed item rejects
    the whole batch.
    """
    items = inputs.get("edits")
    if not isinstance(items, list) or not items:
        raise MalformedEditError("`edits` must be a non-empty list")

    pending: Dict[str, str] = {}
    order: List[str] = []
    for i, item in enumerate(items, 1):
        if not isinstance(item, dict):
            raise MalformedEditError(f"Edit {i} is not an object")
        path = item.get("path")
        has_content = "content" in item
        has_replace = "old_string" in item
        if has_content == has_replace:
            raise MalformedEditError(f"Edit {i} ({path}): give either `content` or `old_string`/`new_string`")

        full = workspace.resolve(path)
        key = os.path.relpath(full, workspace.root).replace(os.sep, "/")
        if has_content:
            new_content = item["content"]
            if not isinstance(new_content, str):
                raise MalformedEditError(f"Edit {i} ({path}): `content` must be a string")
        else:
            old, new = item.get("old_string"), item.get("new_string", "")
            if not isinstance(old, str) or not old or not isinstance(new, str):
                raise MalformedEditError(f"Edit {i} ({path}): `old_string` must be a non-empty string")
            if key in pending:
                current = pending[key]
            elif os.path.isfile(full):
                with open(full, "r", encoding="utf-8", errors="replace") as f:
                    current = f.read()
            else:
                raise MalformedEditError(f"Edit {i}: file not found: {path}")
            count = current.count(old)
            if count != 1:
                raise MalformedEditError(
                    f"Edit {i} ({path}): old_string must occur exactly once, found {count}. "
                    "Re-read the file and include more surrounding context."
                )
            new_content = current.replace(old, new, 1)

        if key not in pending:
            order.append(key)
        pending[key] = new_content

    return [Edit(path, pending[path]) for path in order]
