"""Tool schema definitions (Bedrock/Anthropic Messages API) and dispatch maps."""

from typing import Any, Callable, Dict, List

from tools.file_ops import read_file, list_files


WRITE_FILES_NAME = "write_files"
RUN_CHECK_NAME = "run_check"

READ_FILE_DEFINITION: Dict[str, Any] = {
    "name": "read_file",
    "description": "Read a file from the workspace. Returns line-numbered content. Files over 500 lines are truncated; use offset/limit to page through them.",
    "input_schema": {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path relative to the workspace root"},
            "offset": {"type": "integer", "description": "1-based line to start from"},
            "limit": {"type": "integer", "description": "Number of lines to read"},
        },
        "required": ["path"],
    },
}

LIST_FILES_DEFINITION: Dict[str, Any] = {
    "name": "list_files",
    "description": "Recursively list the files of the workspace (or a sub-directory), skipping build output and .gitignore'd paths.",
    "input_schema": {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory relative to the workspace root (default: root)"},
        },
        "required": [],
    },
}

RUN_CHECK_DEFINITION: Dict[str, Any] = {
    "name": RUN_CHECK_NAME,
    "description": "Run the project's checker (build and tests) against the current state of the workspace. Returns the exit status and the output. Does not modify the workspace.",
    "input_schema": {
        "type": "object",
        "properties": {},
        "required": [],
    },
}

WRITE_FILES_DEFINITION: Dict[str, Any] = {
    "name": WRITE_FILES_NAME,
    "description": "Apply a batch of file edits atomically: either every edit in the batch is applied or none is. Each edit either replaces a whole file (`content`) or replaces one exact, unique occurrence of `old_string` with `new_string`. Paths are relative to the workspace root and must stay inside it.",
    "input_schema": {
        "type": "object",
        "properties": {
            "edits": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": "File path relative to the workspace root"},
                        "content": {"type": "string", "description": "Full new content of the file"},
                        "old_string": {"type": "string", "description": "Exact text to replace (must occur exactly once)"},
                        "new_string": {"type": "string", "description": "Replacement text for old_string"},
                    },
                    "required": ["path"],
                },
                "description": "Edits to apply, in order.",
            },
        },
        "required": ["edits"],
    },
}

# Read-only tools every role may call
READ_TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    READ_FILE_DEFINITION,
    LIST_FILES_DEFINITION,
    RUN_CHECK_DEFINITION,
]

# Editor-only tools
EDIT_TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    WRITE_FILES_DEFINITION,
]

TOOL_IMPLEMENTATIONS: Dict[str, Callable[..., Any]] = {
    "read_file": read_file,
    "list_files": list_files,
}


def tool_definitions(permits_edits: bool) -> List[Dict[str, Any]]:
    if permits_edits:
        return READ_TOOL_DEFINITIONS + EDIT_TOOL_DEFINITIONS
    return list(READ_TOOL_DEFINITIONS)
