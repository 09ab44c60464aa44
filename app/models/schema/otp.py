from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String

from app.database import Base


class OtpRequestEntry(Base):
    __tablename__ = "otp_requests"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    otp_hash = Column(String(255), nullable=False)
    attempts_left = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    resend_after = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "attempts_left >= 0",
            name="ck_otp_requests_attempts_left",
        ),
        CheckConstraint("expires_at > created_at", name="ck_otp_requests_expiry"),
        Index("ix_otp_requests_expires_at", "expires_at"),
    )
