from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select

from app.database import session_scope, storage_errors
from app.models.db_operation import _add_record, _select_one_or_none
from app.models.schema.role import PermissionEntry, RoleEntry
from app.models.schema.user import APP_ROLES

LOGGER = logging.getLogger(__name__)

RIGHTS = ("view", "create", "edit", "delete")
MODULES = ("Dashboard", "Users", "Roles", "Audit Logs")

ROLE_DESCRIPTIONS = {
    "System Admin": "Full system access and control",
    "Admin": "Administrative access to most features",
    "Manager": "Department management access",
    "User": "Standard user access",
}

# (view, create, edit, delete) per module
_ALL = (True, True, True, True)
_NONE = (False, False, False, False)
_VIEW = (True, False, False, False)
DEFAULT_PERMISSIONS = {
    "System Admin": {module: _ALL for module in MODULES},
    "Admin": {
        "Dashboard": (True, True, True, False),
        "Users": _ALL,
        "Roles": (True, True, True, False),
        "Audit Logs": (True, True, True, False),
    },
    "Manager": {"Dashboard": _VIEW, "Users": _VIEW, "Roles": _NONE, "Audit Logs": _NONE},
    "User": {"Dashboard": _VIEW, "Users": _NONE, "Roles": _NONE, "Audit Logs": _NONE},
}


@dataclass(frozen=True)
class RoleView:
    name: str
    description: str | None
    user_count: int = 0
    permissions: dict[str, dict[str, bool]] = field(default_factory=dict)


class RoleStore:
    def ensure_roles(self) -> None:
        """Seed the fixed roles and their default permissions; existing rows are left as edited."""
        now = datetime.now(timezone.utc)
        created = 0
        with session_scope() as session:
            for name in APP_ROLES:
                if _select_one_or_none(session, "role", name=name) is None:
                    _add_record(
                        session,
                        "role",
                        name=name,
                        description=ROLE_DESCRIPTIONS[name],
                        created_at=now,
                    )
                    created += 1
            for name, modules in DEFAULT_PERMISSIONS.items():
                for module, flags in modules.items():
                    if _select_one_or_none(
                        session, "permission", role_name=name, module=module
                    ) is not None:
                        continue
                    _add_record(
                        session,
                        "permission",
                        role_name=name,
                        module=module,
                        **{f"can_{right}": flag for right, flag in zip(RIGHTS, flags)},
                    )
        if created:
            LOGGER.info("Seeded %d roles", created)

    def has_permission(self, role: str, module: str, right: str = "view") -> bool:
        if right not in RIGHTS:
            raise ValueError(f"Unknown permission '{right}'")
        with storage_errors("permission lookup"):
            with session_scope() as session:
                entry = _select_one_or_none(
                    session, "permission", role_name=role, module=module
                )
        return bool(entry is not None and getattr(entry, f"can_{right}"))

    def list_roles(self, user_counts: dict[str, int] | None = None) -> list[RoleView]:
        user_counts = user_counts or {}
        with storage_errors("role listing"):
            with session_scope() as session:
                roles = session.execute(select(RoleEntry).order_by(RoleEntry.id)).scalars().all()
                permissions = session.execute(select(PermissionEntry)).scalars().all()

        by_role: dict[str, dict[str, dict[str, bool]]] = {}
        for entry in permissions:
            by_role.setdefault(entry.role_name, {})[entry.module] = {
                right: bool(getattr(entry, f"can_{right}")) for right in RIGHTS
            }
        return [
            RoleView(
                name=role.name,
                description=role.description,
                user_count=user_counts.get(role.name, 0),
                permissions=by_role.get(role.name, {}),
            )
            for role in roles
        ]


role_store = RoleStore()
