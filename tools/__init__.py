"""
Tool definitions and implementations for agent sessions.
Each tool has an Anthropic-compatible schema. Read-only tools run through
execute_tool; write_files and run_check are state transitions handled by the
session itself.
"""

from tools._common import ToolResult  # noqa: F401
from tools.gitignore import load_gitignore, is_ignored  # noqa: F401
from tools.file_ops import read_file, list_files  # noqa: F401
from tools.schemas import (  # noqa: F401
    READ_TOOL_DEFINITIONS,
    EDIT_TOOL_DEFINITIONS,
    TOOL_IMPLEMENTATIONS,
    WRITE_FILES_NAME,
    RUN_CHECK_NAME,
    tool_definitions,
)
from tools.dispatch import execute_tool  # noqa: F401
