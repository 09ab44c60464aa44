from typing import Callable

from fastapi import Depends, Header, Request

from app.services.audit import AuditChainWriter, RequestContext, audit_writer
from app.services.errors import AuthenticationError, PermissionDeniedError
from app.services.otp import OtpLifecycle, otp_lifecycle
from app.services.roles import RoleStore, role_store
from app.services.tokens import SessionClaims, TokenError, decode_session_token
from app.services.users import AccountDirectory, account_directory


def get_otp_lifecycle() -> OtpLifecycle:
    return otp_lifecycle


def get_account_directory() -> AccountDirectory:
    return account_directory


def get_audit_writer() -> AuditChainWriter:
    return audit_writer


def get_role_store() -> RoleStore:
    return role_store


def get_request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip_address = forwarded.split(",")[0].strip() if forwarded else None
    if not ip_address and request.client:
        ip_address = request.client.host
    return RequestContext(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )


def get_current_claims(authorization: str | None = Header(default=None)) -> SessionClaims:
    if not authorization:
        raise AuthenticationError("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Invalid Authorization header")
    try:
        return decode_session_token(token)
    except TokenError as exc:
        raise AuthenticationError(str(exc)) from exc


def require_permission(module: str, right: str = "view") -> Callable[..., SessionClaims]:
    def dependency(
        claims: SessionClaims = Depends(get_current_claims),
        roles: RoleStore = Depends(get_role_store),
    ) -> SessionClaims:
        if not roles.has_permission(claims.role, module, right):
            raise PermissionDeniedError()
        return claims

    return dependency
