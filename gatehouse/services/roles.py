# gatehouse/services/roles.py
"""
Guard roles as a closed set.
The identity provider resolves every caller to a Guard before an engine call.
"""

import enum
from dataclasses import dataclass


class GuardRole(str, enum.Enum):
    GATEHOUSE = "guardia_caseta"
    BUILDING = "guardia_edificio"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"

    @property
    def is_override(self) -> bool:
        """Supervisors and admins may perform any checkpoint action."""
        return self in (GuardRole.SUPERVISOR, GuardRole.ADMIN)


@dataclass(frozen=True)
class Guard:
    user_id: int
    role: GuardRole

    def can_act_as(self, role: GuardRole) -> bool:
        return self.role == role or self.role.is_override
