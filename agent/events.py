"""
Agent event data type.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional


@dataclass
class AgentEvent:
    """Event emitted during a session run"""
    type: str  # turn_start, text, tool_call, edit_applied, edit_rejected, check_result, retry, done, incomplete, error
    content: str = ""
    data: Optional[Dict[str, Any]] = None
