"""
Read-only lookup tables owned by the user/project administration screens.

The lifecycle engine only reads these rows; creating and editing them is outside
this service.
"""
from sqlalchemy import Column, String, JSON, Enum as SQLEnum
from app.database import Base
from app.models.enums import UserRole


class AppUser(Base):
    __tablename__ = "app_users"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False)


class Project(Base):
    """A customer project. support_staff_ids[0] is the project manager."""
    __tablename__ = "projects"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    support_staff_ids = Column(JSON, nullable=False, default=list)
    customer_contact_ids = Column(JSON, nullable=False, default=list)
