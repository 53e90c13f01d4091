"""Resolved caller identity. Produced by the auth layer; the core never checks credentials."""
from dataclasses import dataclass

from tappark.core.constants import PRIVILEGED_ROLES, ROLE_USER


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str = ROLE_USER

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    def can_manage(self, owner_user_id: int | None) -> bool:
        return self.is_privileged or (owner_user_id is not None and owner_user_id == self.user_id)
