from fastapi import APIRouter, Depends

from app.config import settings
from app.dependencies import (
    get_account_directory,
    get_otp_lifecycle,
    get_request_context,
)
from app.schemas.errors import ErrorResponse
from app.schemas.otp import (
    OtpIssueRequest,
    OtpResendRequest,
    OtpSentResponse,
    OtpVerifyRequest,
    SessionResponse,
)
from app.schemas.users import AccountSummary, LoginRequest
from app.services.audit import RequestContext
from app.services.errors import InternalError
from app.services.otp import OtpLifecycle
from app.services.tokens import TokenError, create_session_token
from app.services.users import AccountDirectory, AccountView

router = APIRouter(tags=["auth"])

_ERRORS = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


def _session_response(account: AccountView) -> SessionResponse:
    try:
        token = create_session_token(account.id, account.email, account.role)
    except TokenError as exc:
        raise InternalError("Unable to issue session token") from exc
    return SessionResponse(
        token=token,
        user=AccountSummary(**account.public()),
        redirectTo=settings.post_login_redirect,
    )


@router.post("/otp/issue", response_model=OtpSentResponse, responses=_ERRORS)
def issue_otp(
    payload: OtpIssueRequest,
    lifecycle: OtpLifecycle = Depends(get_otp_lifecycle),
    context: RequestContext = Depends(get_request_context),
) -> OtpSentResponse:
    outcome = lifecycle.issue(payload.name, payload.email, payload.password, context)
    return OtpSentResponse(
        message="OTP sent successfully",
        resend_after_seconds=outcome.resend_after_seconds,
    )


@router.post(
    "/otp/resend",
    response_model=OtpSentResponse,
    responses={**_ERRORS, 429: {"model": ErrorResponse}},
)
def resend_otp(
    payload: OtpResendRequest,
    lifecycle: OtpLifecycle = Depends(get_otp_lifecycle),
    context: RequestContext = Depends(get_request_context),
) -> OtpSentResponse:
    outcome = lifecycle.resend(payload.email, context)
    return OtpSentResponse(
        message="New OTP sent successfully",
        resend_after_seconds=outcome.resend_after_seconds,
    )


@router.post("/otp/verify", response_model=SessionResponse, responses=_ERRORS)
def verify_otp(
    payload: OtpVerifyRequest,
    lifecycle: OtpLifecycle = Depends(get_otp_lifecycle),
    context: RequestContext = Depends(get_request_context),
) -> SessionResponse:
    outcome = lifecycle.verify(payload.email, payload.otp, context)
    return _session_response(outcome.account)


@router.post("/login", response_model=SessionResponse, responses=_ERRORS)
def login(
    payload: LoginRequest,
    accounts: AccountDirectory = Depends(get_account_directory),
    context: RequestContext = Depends(get_request_context),
) -> SessionResponse:
    account = accounts.login(payload.email, payload.password, context)
    return _session_response(account)
