"""Caller identity and the capabilities derived from its role"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RoleType(str, Enum):
    admin = "admin"
    trainer = "trainer"
    member = "member"


STAFF_ROLES = (RoleType.admin, RoleType.trainer)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as supplied by the identity service.

    Passed into every mutating crud call; the permission helpers below are the
    only place role rules live.
    """

    user_id: str
    role: RoleType
    display_name: str = ""
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == RoleType.admin

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def can_schedule_for(self, instructor_id: str) -> bool:
        """Admins schedule anyone; trainers only their own classes"""
        if self.is_admin:
            return True
        return self.role == RoleType.trainer and self.user_id == instructor_id

    def can_manage_class(self, gym_class) -> bool:
        return self.can_schedule_for(gym_class.instructor_id)

    def can_act_for(self, user_id: str) -> bool:
        return self.is_admin or self.user_id == user_id
