"""
Agent package - role-scoped sessions over a workspace.

- events: AgentEvent data type
- roles: Role names and their capability rows
- prompts: role templates (PromptTemplate) and system prompt composition
- protocol: classifying model replies into session actions
- session: AgentSession, the turn-loop state machine
"""

from .events import AgentEvent
from .roles import Role, RoleProfile, ROLE_PROFILES, get_profile
from .prompts import PromptTemplate, render_template, template_placeholders, compose_system_prompt
from .protocol import ActionKind, ModelAction, parse_response, parse_edit_batch
from .session import AgentSession, SessionState

__all__ = [
    "AgentEvent",
    "Role",
    "RoleProfile",
    "ROLE_PROFILES",
    "get_profile",
    "PromptTemplate",
    "render_template",
    "template_placeholders",
    "compose_system_prompt",
    "ActionKind",
    "ModelAction",
    "parse_response",
    "parse_edit_batch",
    "AgentSession",
    "SessionState",
]
