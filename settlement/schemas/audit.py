"""Pydantic schemas for audit logs."""
from datetime import datetime
from typing import Optional, Dict, Any
from uuid import UUID

from settlement.schemas.base import BaseResponseSchema, PaginatedResponse


class AuditLogResponse(BaseResponseSchema):
    id: UUID
    action: str
    entity_type: str
    entity_id: Optional[UUID] = None
    vendor_id: Optional[UUID] = None
    actor: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(PaginatedResponse[AuditLogResponse]):
    pass
