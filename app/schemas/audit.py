from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: str
    created_at: datetime
    module: str
    action: str
    success: bool
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    actor_role: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    target_summary: Optional[str] = None
    details: Optional[Any] = None
    metadata: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    prev_hash: str
    chain_hash: str


class AuditLogPage(BaseModel):
    total: int
    limit: int
    offset: int
    items: list[AuditLogResponse]


class ChainVerificationResponse(BaseModel):
    valid: bool
    checked: int
    head_matches: bool
    first_broken: Optional[str] = None
    broken_entries: list[str]
    reason: Optional[str] = None
