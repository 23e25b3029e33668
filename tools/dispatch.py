"""Dispatch for the read-only tools the session does not handle itself."""

import logging
from typing import Any, Dict

from errors import MalformedEditError
from tools._common import ToolResult
from tools.schemas import TOOL_IMPLEMENTATIONS

logger = logging.getLogger(__name__)


def execute_tool(name: str, inputs: Dict[str, Any], workspace: Any) -> ToolResult:
    """Execute a read-only tool by name against the workspace."""
    impl = TOOL_IMPLEMENTATIONS.get(name)
    if not impl:
        return ToolResult(success=False, output="", error=f"Unknown tool: {name}")
    if not isinstance(inputs, dict):
        return ToolResult(success=False, output="", error=f"Invalid arguments for {name}: expected an object")
    try:
        return impl(workspace, **inputs)
    except TypeError as e:
        return ToolResult(success=False, output="", error=f"Invalid arguments for {name}: {e}")
    except (OSError, MalformedEditError) as e:
        logger.exception(f"Tool execution error: {name}")
        return ToolResult(success=False, output="", error=f"Tool error: {e}")
