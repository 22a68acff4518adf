"""API endpoints for the settlement audit trail."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query

from settlement.api.deps import DB, StaffActor
from settlement.schemas.audit import AuditLogResponse, AuditLogListResponse
from settlement.services.audit_service import AuditService

router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: DB,
    actor: StaffActor,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    vendor_id: Optional[UUID] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List audit events, newest first."""
    logs, total = await AuditService(db).get_audit_logs(
        entity_type=entity_type.upper() if entity_type else None,
        entity_id=entity_id,
        vendor_id=vendor_id,
        action=action.upper() if action else None,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        skip=skip,
        limit=limit,
    )
