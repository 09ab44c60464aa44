from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.users import AccountSummary


class OtpIssueRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=1024)


class OtpResendRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)


class OtpVerifyRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    otp: Optional[str] = Field(default=None, max_length=16)


class OtpSentResponse(BaseModel):
    success: bool = True
    message: str
    resend_after_seconds: int


class SessionResponse(BaseModel):
    success: bool = True
    token: str
    user: AccountSummary
    redirectTo: str
