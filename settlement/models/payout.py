"""Payout policy and payout models.

A payout is a single money transfer to one vendor covering a batch of
commission entries. Its status is a closed state machine:

    PENDING → PROCESSING → COMPLETED
                         ↘ FAILED → PROCESSING (retry)
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import Enum as SAEnum
from sqlalchemy import String, Boolean, Integer, Numeric, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.core.enum_utils import enum_comment
from settlement.database import Base
from settlement.db_types import UUIDType, UTCDateTime, utcnow

if TYPE_CHECKING:
    from settlement.models.commission import CommissionEntry


class PayoutFrequency(str, Enum):
    """How often a vendor is paid."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class PayoutMethod(str, Enum):
    """Money movement rail."""
    BANK_TRANSFER = "BANK_TRANSFER"
    UPI = "UPI"


class PayoutStatus(str, Enum):
    """Payout status."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class FailureKind(str, Enum):
    """Classification of the last failed transfer attempt."""
    TRANSIENT = "TRANSIENT"     # Retried automatically
    PERMANENT = "PERMANENT"     # Frozen until an operator intervenes


class PayoutPolicy(Base):
    """
    Per-vendor payout configuration.
    Read by the batcher to decide when a vendor is due.
    """
    __tablename__ = "payout_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        unique=True,
        nullable=False,
        index=True
    )

    frequency: Mapped[PayoutFrequency] = mapped_column(
        SAEnum(PayoutFrequency, native_enum=False, length=50),
        nullable=False,
        default=PayoutFrequency.WEEKLY,
        comment=enum_comment(PayoutFrequency)
    )
    minimum_payout: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("50.00")
    )
    method: Mapped[PayoutMethod] = mapped_column(
        SAEnum(PayoutMethod, native_enum=False, length=50),
        nullable=False,
        default=PayoutMethod.BANK_TRANSFER,
        comment=enum_comment(PayoutMethod)
    )
    account_reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Gateway fund account id for the vendor"
    )

    # Schedule
    next_scheduled_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_payout_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.next_scheduled_date <= now

    def __repr__(self) -> str:
        return f"<PayoutPolicy(vendor={self.vendor_id}, frequency='{self.frequency}', minimum={self.minimum_payout})>"


class Payout(Base):
    """
    Payout batch for one vendor.
    Amount equals the sum of absorbed commission entries and never changes.
    """
    __tablename__ = "payouts"
    __table_args__ = (
        Index("ix_payouts_vendor_status", "vendor_id", "status"),
        Index("ix_payouts_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4,
        comment="Also the gateway idempotency key"
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    entry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[PayoutStatus] = mapped_column(
        SAEnum(PayoutStatus, native_enum=False, length=50),
        default=PayoutStatus.PENDING,
        nullable=False,
        comment=enum_comment(PayoutStatus)
    )

    # Payment details snapshot from the policy at batch time
    method: Mapped[PayoutMethod] = mapped_column(
        SAEnum(PayoutMethod, native_enum=False, length=50),
        nullable=False
    )
    account_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    scheduled_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Execution attempts
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_kind: Mapped[Optional[FailureKind]] = mapped_column(
        SAEnum(FailureKind, native_enum=False, length=50),
        nullable=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Raw gateway detail, staff only"
    )
    failed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    requires_review: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Excluded from automatic retry"
    )

    gateway_reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Gateway transfer id"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    # Relationships
    entries: Mapped[List["CommissionEntry"]] = relationship(
        "CommissionEntry",
        back_populates="payout"
    )

    def __repr__(self) -> str:
        return f"<Payout(vendor={self.vendor_id}, amount={self.amount}, status='{self.status}')>"
