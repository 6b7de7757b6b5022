"""SQLAlchemy models for people who own and review expenses."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import relationship, validates

from ..database import Base


class Role(Base):
    """Static catalog of user roles (Employee, Manager)."""

    __tablename__ = "Roles"

    id = Column("RoleId", Integer, primary_key=True, autoincrement=True)
    name = Column("RoleName", String(50), nullable=False, unique=True)
    description = Column("Description", String(250), nullable=True)

    users = relationship("User", back_populates="role")


class User(Base):
    """An employee who can own expenses and, as a manager, review them."""

    __tablename__ = "Users"
    __table_args__ = (
        CheckConstraint("ManagerId IS NULL OR ManagerId <> UserId", name="ck_users_manager_not_self"),
    )

    id = Column("UserId", Integer, primary_key=True, autoincrement=True)
    name = Column("UserName", String(100), nullable=False)
    email = Column("Email", String(255), nullable=False, unique=True)
    role_id = Column("RoleId", Integer, ForeignKey("Roles.RoleId"), nullable=False)
    manager_id = Column("ManagerId", Integer, ForeignKey("Users.UserId"), nullable=True)
    is_active = Column("IsActive", Boolean, nullable=False, default=True, server_default="1")
    created_at = Column("CreatedAt", DateTime(timezone=True), server_default=func.now(), nullable=False)

    role = relationship("Role", back_populates="users")
    manager = relationship("User", remote_side=[id], foreign_keys=[manager_id])

    @validates("manager")
    def _validate_manager(self, _key, manager):
        if manager is None:
            return manager
        if manager is self:
            raise ValueError("A user cannot be their own manager")
        if not manager.is_active:
            raise ValueError("A user's manager must be an active user")
        return manager
