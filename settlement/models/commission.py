"""Commission models for vendor settlement.

Supports:
- Time-windowed commission rates (vendor default or category override)
- Percentage and flat commission types with min/max clamping
- Append-only commission ledger, one entry per settled order
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional
from decimal import Decimal

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.core.enum_utils import enum_comment
from settlement.database import Base
from settlement.db_types import UUIDType, UTCDateTime, utcnow

if TYPE_CHECKING:
    from settlement.models.payout import Payout


class RateType(str, Enum):
    """How a commission rate is applied."""
    PERCENTAGE = "PERCENTAGE"   # Percent of order total
    FLAT = "FLAT"               # Fixed amount per order


class RateSource(str, Enum):
    """Which level of the resolution chain produced a rate."""
    CATEGORY = "CATEGORY"
    VENDOR = "VENDOR"
    PLATFORM = "PLATFORM"


class CommissionStatus(str, Enum):
    """Commission entry status."""
    PENDING = "PENDING"         # Recorded, amount not yet final
    CALCULATED = "CALCULATED"   # Amount final, waiting for payout
    PAID = "PAID"               # Payout completed


class CommissionRate(Base):
    """
    Commission rate for a vendor, optionally scoped to a category.
    At most one rate is effective per (vendor, category, instant).
    """
    __tablename__ = "commission_rates"
    __table_args__ = (
        Index("ix_commission_rates_lookup", "vendor_id", "category_id", "effective_from"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        comment="NULL = vendor default rate"
    )

    rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 4),
        nullable=False,
        comment="Percent for PERCENTAGE, currency amount for FLAT"
    )
    rate_type: Mapped[RateType] = mapped_column(
        SAEnum(RateType, native_enum=False, length=50),
        nullable=False,
        default=RateType.PERCENTAGE,
        comment=enum_comment(RateType)
    )
    min_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    max_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)

    # Validity window [effective_from, effective_to)
    effective_from: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    effective_to: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<CommissionRate(vendor={self.vendor_id}, category={self.category_id}, rate={self.rate} {self.rate_type})>"


class CommissionEntry(Base):
    """
    Commission ledger entry.
    Exactly one per settled order; amount is immutable once written.
    """
    __tablename__ = "commission_entries"
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_commission_entries_order"),
        Index("ix_commission_entries_unsettled", "vendor_id", "payout_id", "created_at"),
        Index("ix_commission_entries_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        nullable=False,
        comment="Idempotency key: one entry per order"
    )
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Values
    order_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # Rate snapshot at settlement time
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    rate_type: Mapped[RateType] = mapped_column(
        SAEnum(RateType, native_enum=False, length=50),
        nullable=False
    )
    rate_source: Mapped[RateSource] = mapped_column(
        SAEnum(RateSource, native_enum=False, length=50),
        nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Commission amount, rounded half-up to the minor unit"
    )

    # Status
    status: Mapped[CommissionStatus] = mapped_column(
        SAEnum(CommissionStatus, native_enum=False, length=50),
        default=CommissionStatus.CALCULATED,
        nullable=False,
        comment=enum_comment(CommissionStatus)
    )

    # Payout Reference (set exactly once, when absorbed into a batch)
    payout_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("payouts.id", ondelete="RESTRICT"),
        nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    settled_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="When the order was settled; rate resolution instant"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )

    # Relationships
    payout: Mapped[Optional["Payout"]] = relationship(
        "Payout",
        back_populates="entries"
    )

    def __repr__(self) -> str:
        return f"<CommissionEntry(order={self.order_id}, amount={self.amount}, status='{self.status}')>"
