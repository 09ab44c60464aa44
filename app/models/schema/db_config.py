from app.models.schema.audit import AuditLogEntry, ChainHead
from app.models.schema.otp import OtpRequestEntry
from app.models.schema.role import PermissionEntry, RoleEntry
from app.models.schema.user import AccountEntry


class Databases:
    otp = OtpRequestEntry
    user = AccountEntry
    audit = AuditLogEntry
    chain_head = ChainHead
    role = RoleEntry
    permission = PermissionEntry
