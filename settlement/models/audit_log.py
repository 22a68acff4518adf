import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement.database import Base
from settlement.db_types import JSONType, UUIDType, UTCDateTime, utcnow


class AuditLog(Base):
    """
    Audit log model for settlement state transitions.
    Records: commission recorded, payout created/processing/completed/failed,
    policy and rate changes. Rows are never updated.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Actions: COMMISSION_RECORDED, PAYOUT_CREATED, PAYOUT_PROCESSING,
    #          PAYOUT_COMPLETED, PAYOUT_FAILED, POLICY_UPDATED, RATE_CREATED, etc.

    # Entity being modified
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Entity types: COMMISSION_ENTRY, PAYOUT, PAYOUT_POLICY, COMMISSION_RATE

    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    vendor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    # Who triggered it: user id from the token, "scheduler", "cron", ...
    actor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Change tracking
    old_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"
