from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=1024)


class AccountSummary(BaseModel):
    id: str
    name: str
    email: str
    role: str


class AccountResponse(AccountSummary):
    status: str
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class RolePermissions(BaseModel):
    view: bool = False
    create: bool = False
    edit: bool = False
    delete: bool = False


class RoleResponse(BaseModel):
    name: str
    description: Optional[str] = None
    user_count: int = 0
    permissions: dict[str, RolePermissions] = Field(default_factory=dict)
