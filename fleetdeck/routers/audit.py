from typing import Optional
from fastapi import APIRouter, Depends, Query
from fleetdeck.dependencies import get_audit_service
from fleetdeck.models import AuditEntry
from fleetdeck.schemas.audit import AuditEntryRead, AuditPage
from fleetdeck.services import AuditService
from fleetdeck.services.audit import MAX_PAGE_SIZE

router = APIRouter(prefix="/api/audit-logs", tags=["audit"])

def _to_read(entry: AuditEntry) -> AuditEntryRead:
    return AuditEntryRead(
        id=entry.id,
        userId=entry.user_id,
        username=entry.username,
        action=entry.action,
        resourceType=entry.resource_type,
        resourceId=entry.resource_id,
        resourceName=entry.resource_name,
        details=entry.details,
        ipAddress=entry.ip_address,
        userAgent=entry.user_agent,
        createdAt=entry.created_at,
    )

@router.get("", response_model=AuditPage)
def list_audit_logs(
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    service: AuditService = Depends(get_audit_service)
) -> AuditPage:
    """Returns one page of the audit trail, newest first.

    Args:
        user_id: Optional actor id filter.
        action: Optional action tag filter (e.g. ``start_app``).
        resource_type: Optional resource type filter (e.g. ``app``).
        limit: Page size.
        offset: Entries to skip.
        service: Injected AuditService.

    Returns:
        The page plus the total number of matching entries.
    """
    entries, total = service.query(
        user_id=user_id, action=action, resource_type=resource_type, limit=limit, offset=offset
    )
    return AuditPage(logs=[_to_read(e) for e in entries], total=total, limit=limit, offset=offset)
