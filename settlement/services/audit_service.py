import logging
from enum import Enum
from typing import Optional, Dict, Any, List
import uuid
from datetime import datetime

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Settlement state transitions that produce an audit row."""
    COMMISSION_RECORDED = "COMMISSION_RECORDED"
    PAYOUT_CREATED = "PAYOUT_CREATED"
    PAYOUT_PROCESSING = "PAYOUT_PROCESSING"
    PAYOUT_COMPLETED = "PAYOUT_COMPLETED"
    PAYOUT_FAILED = "PAYOUT_FAILED"
    PAYOUT_REVIEW_FLAGGED = "PAYOUT_REVIEW_FLAGGED"
    POLICY_UPDATED = "POLICY_UPDATED"
    RATE_CREATED = "RATE_CREATED"
    RATE_ENDED = "RATE_ENDED"


class AuditEntityType(str, Enum):
    COMMISSION_ENTRY = "COMMISSION_ENTRY"
    PAYOUT = "PAYOUT"
    PAYOUT_POLICY = "PAYOUT_POLICY"
    COMMISSION_RATE = "COMMISSION_RATE"


class AuditService:
    """
    Audit service for settlement events.

    Rows are added to the caller's session so they commit (or roll back)
    together with the transition they describe.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: AuditEventType,
        entity_type: AuditEntityType,
        entity_id: Optional[uuid.UUID] = None,
        vendor_id: Optional[uuid.UUID] = None,
        actor: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The transition that happened
            entity_type: Type of entity (PAYOUT, COMMISSION_ENTRY, ...)
            entity_id: ID of the affected entity
            vendor_id: Vendor the entity belongs to
            actor: Who triggered it (user id, "scheduler", "cron")
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)
            description: Human-readable description

        Returns:
            The created AuditLog entry
        """
        audit_log = AuditLog(
            action=action.value,
            entity_type=entity_type.value,
            entity_id=entity_id,
            vendor_id=vendor_id,
            actor=actor,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()

        logger.info(
            f"[AUDIT] {action.value} {entity_type.value}={entity_id} vendor={vendor_id}"
            + (f" - {description}" if description else "")
        )
        return audit_log

    async def get_audit_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
        vendor_id: Optional[uuid.UUID] = None,
        action: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[List[AuditLog], int]:
        """
        Get audit logs with filtering.
        """
        stmt = select(AuditLog).order_by(AuditLog.created_at.desc())

        if entity_type:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(AuditLog.entity_id == entity_id)
        if vendor_id:
            stmt = stmt.where(AuditLog.vendor_id == vendor_id)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if start_date:
            stmt = stmt.where(AuditLog.created_at >= start_date)
        if end_date:
            stmt = stmt.where(AuditLog.created_at <= end_date)

        # Count total
        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar()

        # Get paginated results
        stmt = stmt.offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        logs = result.scalars().all()

        return list(logs), total
