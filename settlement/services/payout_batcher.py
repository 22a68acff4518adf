"""
Payout Batcher.

Groups a vendor's unsettled commission entries into one PENDING payout
once the vendor's policy says they are due and the total reaches the
minimum payout. Below the minimum nothing is written and the entries are
carried forward to the next run.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.core.exceptions import ConcurrencyConflict
from settlement.core.locks import VendorLockRegistry, vendor_locks
from settlement.core.money import sum_money
from settlement.db_types import as_utc, utcnow
from settlement.models.commission import CommissionEntry
from settlement.models.payout import Payout, PayoutStatus
from settlement.services.audit_service import AuditService, AuditEventType, AuditEntityType
from settlement.services.commission_ledger import CommissionLedger
from settlement.services.payout_policy import PayoutPolicyService, next_scheduled_date

logger = logging.getLogger(__name__)


class PayoutBatcher:
    """Builds payout batches, one vendor at a time."""

    def __init__(self, db: AsyncSession, locks: Optional[VendorLockRegistry] = None):
        self.db = db
        self.locks = locks or vendor_locks
        self.ledger = CommissionLedger(db)
        self.policies = PayoutPolicyService(db)

    async def build_batch(
        self,
        vendor_id: uuid.UUID,
        now: Optional[datetime] = None,
        force: bool = False,
        actor: Optional[str] = None,
    ) -> Optional[Payout]:
        """
        Build a payout for the vendor if one is due.

        Args:
            vendor_id: Vendor to batch
            now: Evaluation instant (defaults to current time)
            force: Ignore next_scheduled_date (vendor requested payout).
                The policy must still be active and the minimum still applies.
            actor: Recorded on the audit row

        Returns:
            The new PENDING payout, or None when nothing was batched

        Raises:
            ConcurrencyConflict: an entry was absorbed by another worker
                first; nothing was written
        """
        now = as_utc(now) or utcnow()
        async with self.locks.hold(vendor_id):
            return await self._build(vendor_id, now, force, actor)

    async def _build(
        self,
        vendor_id: uuid.UUID,
        now: datetime,
        force: bool,
        actor: Optional[str],
    ) -> Optional[Payout]:
        policy = await self.policies.get_policy(vendor_id)
        if policy is None or not policy.is_active:
            logger.debug(f"Vendor {vendor_id} has no active payout policy")
            return None
        if not force and not policy.is_due(now):
            logger.debug(
                f"Vendor {vendor_id} not due until {policy.next_scheduled_date.isoformat()}"
            )
            return None

        entries = await self.ledger.get_unsettled_by_vendor(vendor_id)
        if not entries:
            return None

        total = sum_money(entry.amount for entry in entries)
        if total < policy.minimum_payout:
            logger.info(
                f"Vendor {vendor_id}: unsettled {total} below minimum "
                f"{policy.minimum_payout}, carrying {len(entries)} entries forward"
            )
            return None

        entry_ids = [entry.id for entry in entries]
        payout = Payout(
            id=uuid.uuid4(),
            vendor_id=vendor_id,
            amount=total,
            entry_count=len(entries),
            status=PayoutStatus.PENDING,
            method=policy.method,
            account_reference=policy.account_reference,
            scheduled_date=now if force else policy.next_scheduled_date,
            attempt_count=0,
            requires_review=False,
        )

        try:
            self.db.add(payout)
            await self.db.flush()

            result = await self.db.execute(
                update(CommissionEntry)
                .where(
                    CommissionEntry.id.in_(entry_ids),
                    CommissionEntry.payout_id.is_(None),
                )
                .values(payout_id=payout.id)
            )
            if result.rowcount != len(entry_ids):
                raise ConcurrencyConflict(
                    f"Vendor {vendor_id}: {len(entry_ids) - result.rowcount} of "
                    f"{len(entry_ids)} entries were absorbed by another batch"
                )

            previous_date = policy.next_scheduled_date
            policy.next_scheduled_date = next_scheduled_date(policy.frequency, now)

            await AuditService(self.db).log(
                action=AuditEventType.PAYOUT_CREATED,
                entity_type=AuditEntityType.PAYOUT,
                entity_id=payout.id,
                vendor_id=vendor_id,
                actor=actor,
                new_values={
                    "amount": payout.amount,
                    "entry_count": payout.entry_count,
                    "entry_ids": entry_ids,
                    "forced": force,
                    "previous_scheduled_date": previous_date,
                    "next_scheduled_date": policy.next_scheduled_date,
                },
                description=f"Payout of {payout.amount} for {payout.entry_count} entries",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Created payout {payout.id} for vendor {vendor_id}: {total} ({len(entry_ids)} entries)")
        return payout
