from fastapi import APIRouter, Depends

from app.dependencies import get_account_directory, get_current_claims, get_role_store
from app.schemas.users import AccountResponse, RoleResponse
from app.services.errors import AuthenticationError
from app.services.roles import RoleStore
from app.services.tokens import SessionClaims
from app.services.users import AccountDirectory

router = APIRouter(tags=["users"])


@router.get("/users/me", response_model=AccountResponse)
def get_me(
    claims: SessionClaims = Depends(get_current_claims),
    accounts: AccountDirectory = Depends(get_account_directory),
) -> AccountResponse:
    account = accounts.get_account(claims.user_id)
    if account is None or account.status != "active":
        raise AuthenticationError("Account is no longer active")
    return AccountResponse(
        id=account.id,
        name=account.name,
        email=account.email,
        role=account.role,
        status=account.status,
        last_login_at=account.last_login_at,
        created_at=account.created_at,
    )


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(
    _claims: SessionClaims = Depends(get_current_claims),
    accounts: AccountDirectory = Depends(get_account_directory),
    roles: RoleStore = Depends(get_role_store),
) -> list[RoleResponse]:
    return [
        RoleResponse(
            name=role.name,
            description=role.description,
            user_count=role.user_count,
            permissions=role.permissions,
        )
        for role in roles.list_roles(accounts.count_by_role())
    ]
