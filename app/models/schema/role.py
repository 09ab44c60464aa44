from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)

from app.database import Base


class RoleEntry(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False, unique=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class PermissionEntry(Base):
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True)
    role_name = Column(String(50), ForeignKey("roles.name"), nullable=False)
    module = Column(String(50), nullable=False)
    can_view = Column(Boolean, nullable=False, default=False)
    can_create = Column(Boolean, nullable=False, default=False)
    can_edit = Column(Boolean, nullable=False, default=False)
    can_delete = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("role_name", "module", name="uq_permissions_role_module"),
    )
