from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text

from app.database import Base


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    module = Column(String(50), nullable=False, index=True)
    action = Column(String(100), nullable=False, index=True)
    actor_id = Column(String(36), nullable=True)
    actor_email = Column(String(255), nullable=True)
    actor_role = Column(String(50), nullable=True)
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(255), nullable=True)
    target_summary = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    details = Column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes.
    extra_metadata = Column("metadata", JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    prev_hash = Column(String(64), nullable=False, unique=True)
    chain_hash = Column(String(64), nullable=False, unique=True)


class ChainHead(Base):
    __tablename__ = "chain_head"

    id = Column(Integer, primary_key=True)
    latest_hash = Column(String(64), nullable=False)
    entry_count = Column(Integer, nullable=False, default=0)
