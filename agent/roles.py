"""
Role profiles.

A role is a name plus a capability row. Sessions consult the row instead of
branching on the role name, so a new role is one more prompt file and one
more entry in ROLE_PROFILES.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union

logger = logging.getLogger(__name__)


class Role(str, Enum):
    READER = "reader"
    EDITOR = "editor"


@dataclass(frozen=True)
class RoleProfile:
    name: str
    permits_edits: bool = False
    permits_rationale_artifact: bool = False
    # Run the checker before accepting a final answer if files changed since the last check
    verify_on_final: bool = False


ROLE_PROFILES: Dict[str, RoleProfile] = {
    Role.READER.value: RoleProfile(name=Role.READER.value),
    Role.EDITOR.value: RoleProfile(
        name=Role.EDITOR.value,
        permits_edits=True,
        permits_rationale_artifact=True,
        verify_on_final=True,
    ),
}


def role_name(role: Union[str, Role]) -> str:
    return role.value if isinstance(role, Role) else str(role)


def get_profile(role: Union[str, Role]) -> RoleProfile:
    """Capability row for a role. Roles without a row get read-only capabilities."""
    name = role_name(role)
    profile = ROLE_PROFILES.get(name)
    if profile is None:
        logger.warning(f"No capability row for role {name!r}; treating it as read-only")
        return RoleProfile(name=name)
    return profile
