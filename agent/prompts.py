"""
Prompt architecture: role templates and system prompt composition.

Role templates live in resources/prompts/<role>.txt and use `$name` or
`${name}` placeholders. The system prompt is assembled from the modules
below according to the session's role profile and checker.
"""

import logging
import os
import re
import shlex
import warnings
from string import Template
from typing import List, Mapping, Optional

from config import app_config
from errors import TemplateNotFoundError, UnboundVariableError, UnusedVariableWarning

from .roles import RoleProfile

logger = logging.getLogger(__name__)

_ROLE_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]*$")


def template_placeholders(text: str) -> List[str]:
    """Names referenced by `$name` / `${name}` placeholders, in first-use order."""
    names: List[str] = []
    for match in Template.pattern.finditer(text):
        name = match.group("named") or match.group("braced")
        if name and name not in names:
            names.append(name)
    return names


def render_template(text: str, variables: Mapping[str, str], role: Optional[str] = None) -> str:
    """Substitute variables into text.

    Every referenced name must be bound. Bound names the template never uses
    only produce an UnusedVariableWarning. `$$` renders as a literal `$`, and a
    `$` not followed by an identifier is left as is.
    """
    referenced = template_placeholders(text)
    missing = [name for name in referenced if name not in variables]
    if missing:
        raise UnboundVariableError(missing, role=role)
    unused = sorted(set(variables) - set(referenced))
    if unused:
        message = f"Variable(s) never referenced by {role or 'template'}: {', '.join(unused)}"
        logger.warning(message)
        warnings.warn(message, UnusedVariableWarning, stacklevel=2)
    return Template(text).safe_substitute({k: str(v) for k, v in variables.items()})


class PromptTemplate:
    """A role's instruction template."""

    def __init__(self, role: str, text: str, source: str = ""):
        self.role = role
        self.text = text
        self.source = source

    @classmethod
    def load(cls, role: str, prompts_dir: Optional[str] = None) -> "PromptTemplate":
        directory = prompts_dir or app_config.prompts_dir
        path = os.path.join(directory, f"{role}.txt")
        if not _ROLE_NAME_RE.match(role or "") or not os.path.isfile(path):
            raise TemplateNotFoundError(role, path)
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
        logger.debug(f"Loaded prompt template {path}")
        return cls(role, text, source=path)

    @property
    def placeholders(self) -> List[str]:
        return template_placeholders(self.text)

    def render(self, variables: Mapping[str, str]) -> str:
        return render_template(self.text, variables, role=self.role)


# ============================================================
# System prompt modules
# ============================================================

_MOD_IDENTITY = """You are an expert software engineer working inside an isolated copy of a project's source tree. Nothing you do here touches the original project until the caller decides to take your result."""

_MOD_WORKSPACE = """<workspace>
- Explore with list_files and read_file. Read code before drawing conclusions about it.
- run_check builds and tests the current state of the workspace in a sandbox:
  {checker}
  It reports the exit status and output. It never changes files.
- A failing check is information, not an error: read the output and react to it.
</workspace>"""

_MOD_READER = """<reader_rules>
You are read-only. You cannot and must not modify files; there is no tool for it, and asking for one ends the session with an error.
When you are done, reply with your findings as plain text (no tool call). That reply is your final answer.
</reader_rules>"""

_MOD_EDITOR = """<editor_rules>
- Change files only through write_files. A batch is applied completely or not at all; if it is rejected, nothing changed.
- Keep changes focused on the assignment. Don't touch files that don't need to change.
- Run run_check after editing and fix what you broke before finishing.
- When you are done, reply with plain text (no tool call) explaining what you changed and why. That reply is your final answer and is saved next to the code as {rationale}.
</editor_rules>"""


def describe_checker(image: str, commands) -> str:
    joined = " && ".join(shlex.join(list(c)) for c in commands)
    return f"`{joined}` in `{image}`"


def compose_system_prompt(profile: RoleProfile, checker_description: str) -> str:
    """Assemble the system prompt for a role profile."""
    parts = [_MOD_IDENTITY, _MOD_WORKSPACE.format(checker=checker_description)]
    if profile.permits_edits:
        parts.append(_MOD_EDITOR.format(rationale=app_config.rationale_filename))
    else:
        parts.append(_MOD_READER)
    return "\n\n".join(parts)
