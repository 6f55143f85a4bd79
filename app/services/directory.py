"""
Lookups the engine consumes from the surrounding administration system:
who a user is (name, role) and which support staff a project has.
"""
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.directory import AppUser, Project
from app.models.enums import UserRole

SUPPORT_SIDE_ROLES = (UserRole.SUPPORT, UserRole.SUPPORT_LEAD)


@dataclass(frozen=True)
class Actor:
    """An already-authenticated user (or the system) acting on a ticket."""

    id: str
    name: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_support_side(self) -> bool:
        return self.role in SUPPORT_SIDE_ROLES

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER

    @property
    def is_system(self) -> bool:
        return self.role == UserRole.SYSTEM


SYSTEM_ACTOR = Actor(id="system", name="System", role=UserRole.SYSTEM)


@dataclass(frozen=True)
class ProjectStaffing:
    """Who works a project. The first support staff id is the project manager."""

    project_id: str
    support_staff_ids: List[str]
    customer_contact_ids: List[str]

    @property
    def project_manager_id(self) -> Optional[str]:
        return self.support_staff_ids[0] if self.support_staff_ids else None


class Directory:
    """Interface for user and project lookups."""

    def get_actor(self, user_id: str) -> Optional[Actor]:
        raise NotImplementedError

    def get_staffing(self, project_id: str) -> Optional[ProjectStaffing]:
        raise NotImplementedError

    def display_name(self, user_id: str) -> str:
        actor = self.get_actor(user_id)
        return actor.name if actor else user_id


class DatabaseDirectory(Directory):
    """Directory backed by the read-only app_users and projects tables."""

    def __init__(self, db: Session):
        self.db = db

    def get_actor(self, user_id: str) -> Optional[Actor]:
        user = self.db.query(AppUser).filter(AppUser.id == user_id).first()
        if not user or user.role == UserRole.SYSTEM:
            return None
        return Actor(id=user.id, name=user.name, role=user.role)

    def get_staffing(self, project_id: str) -> Optional[ProjectStaffing]:
        project = self.db.query(Project).filter(Project.id == project_id).first()
        if not project:
            return None
        return ProjectStaffing(
            project_id=project.id,
            support_staff_ids=list(project.support_staff_ids or []),
            customer_contact_ids=list(project.customer_contact_ids or []),
        )
