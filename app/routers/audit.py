from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from app.database import storage_errors
from app.dependencies import get_audit_writer, get_request_context, require_permission
from app.schemas.audit import AuditLogPage, AuditLogResponse, ChainVerificationResponse
from app.services.audit import ActorRef, AuditChainWriter, AuditFilters, RequestContext
from app.services.tokens import SessionClaims

router = APIRouter(prefix="/audit", tags=["audit"])

_can_view_audit = require_permission("Audit Logs", "view")


def _filters(
    module: Optional[str] = Query(default=None, max_length=50),
    action: Optional[str] = Query(default=None, max_length=100),
    actor_email: Optional[str] = Query(default=None, max_length=255),
    success: Optional[bool] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> AuditFilters:
    return AuditFilters(
        module=module,
        action=action,
        actor_email=actor_email,
        success=success,
        limit=limit,
        offset=offset,
    )


@router.get("/logs", response_model=AuditLogPage)
def list_audit_logs(
    filters: AuditFilters = Depends(_filters),
    _claims: SessionClaims = Depends(_can_view_audit),
    audit: AuditChainWriter = Depends(get_audit_writer),
) -> AuditLogPage:
    with storage_errors("audit listing"):
        entries, total = audit.list_entries(filters)
    return AuditLogPage(
        total=total,
        limit=filters.limit,
        offset=filters.offset,
        items=[
            AuditLogResponse(
                id=entry.id,
                created_at=entry.created_at,
                module=entry.module,
                action=entry.action,
                success=entry.success,
                actor_id=entry.actor_id,
                actor_email=entry.actor_email,
                actor_role=entry.actor_role,
                target_type=entry.target_type,
                target_id=entry.target_id,
                target_summary=entry.target_summary,
                details=entry.details,
                metadata=entry.extra_metadata,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                prev_hash=entry.prev_hash,
                chain_hash=entry.chain_hash,
            )
            for entry in entries
        ],
    )


@router.get("/logs/export")
def export_audit_logs(
    filters: AuditFilters = Depends(_filters),
    claims: SessionClaims = Depends(_can_view_audit),
    audit: AuditChainWriter = Depends(get_audit_writer),
    context: RequestContext = Depends(get_request_context),
) -> Response:
    with storage_errors("audit export"):
        content = audit.export_csv(filters)
    audit.append(
        "Audit Logs",
        "AUDIT_LOGS_EXPORTED",
        actor=ActorRef(id=claims.user_id, email=claims.email, role=claims.role),
        details={"module": filters.module, "action": filters.action},
        context=context,
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit_logs.csv"'},
    )


@router.get("/verify", response_model=ChainVerificationResponse)
def verify_audit_chain(
    _claims: SessionClaims = Depends(_can_view_audit),
    audit: AuditChainWriter = Depends(get_audit_writer),
) -> ChainVerificationResponse:
    with storage_errors("audit chain verification"):
        report = audit.verify_chain()
    return ChainVerificationResponse(
        valid=report.valid,
        checked=report.checked,
        head_matches=report.head_matches,
        first_broken=report.first_broken,
        broken_entries=report.broken_entries,
        reason=report.reason,
    )
