from sqlalchemy import Boolean, Column, DateTime, Enum, Index, JSON, String

from app.database import Base

APP_ROLES = ("System Admin", "Admin", "Manager", "User")
DEFAULT_ROLE = "User"
ACCOUNT_STATUSES = ("active", "inactive")


class AccountEntry(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=True)  # NULL for SSO-provisioned accounts
    external_providers = Column(JSON, nullable=True)
    role = Column(
        Enum(*APP_ROLES, name="app_role"), nullable=False, default=DEFAULT_ROLE
    )
    status = Column(String(16), nullable=False, default="active")
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("ix_users_email", "email"),)
