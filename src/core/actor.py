"""
Identity of whoever triggers an operation (dashboard session or system job)
"""

from dataclasses import dataclass
from typing import Optional

from src.core.enums import Role


@dataclass(frozen=True)
class Actor:
    id: str
    role: str = Role.USER.value
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return Role.is_staff(self.role)

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


SYSTEM_ACTOR = Actor(id="system", role=Role.ADMIN.value, email=None, name="system")
UNKNOWN_ACTOR = Actor(id="unknown", role=Role.USER.value)
