"""Shared types for the tools package."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: str
    error: Optional[str] = None

    def to_content(self) -> str:
        """Text sent back to the model as the tool_result content."""
        if self.success:
            return self.output or "(no output)"
        return f"Error: {self.error}" + (f"\n{self.output}" if self.output else "")
