"""
Payout Processor.

Owns the payout state machine:

    PENDING ──execute──▶ PROCESSING ──success──▶ COMPLETED
                              │
                              └──failure──▶ FAILED ──retry──▶ PROCESSING

Every transition into PROCESSING is a compare-and-set on the current
status, committed before the gateway is called, so two workers racing on
the same payout produce exactly one transfer. Each claim bumps
attempt_count; the result of a transfer is only written while that count
is unchanged, so a worker whose claim was demoted and re-claimed cannot
reopen the payout under the live claim. The payout id is the
gateway idempotency key; a retry after an unknown outcome cannot pay twice.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List, Sequence

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import settings
from settlement.core.exceptions import (
    PayoutNotFoundError,
    InvalidPayoutStateError,
    TransientTransferFailure,
    PermanentTransferFailure,
)
from settlement.db_types import as_utc, utcnow
from settlement.models.commission import CommissionEntry, CommissionStatus
from settlement.models.payout import Payout, PayoutPolicy, PayoutStatus, FailureKind
from settlement.services.audit_service import AuditService, AuditEventType, AuditEntityType
from settlement.services.transfer_gateway import (
    TransferGateway,
    TransferResult,
    TransferOutcome,
    get_transfer_gateway,
)

logger = logging.getLogger(__name__)

STUCK_PROCESSING_REASON = "Processing interrupted, transfer outcome unknown"


@dataclass
class ExecutionResult:
    """What happened to one payout on one execute/retry call."""
    payout_id: uuid.UUID
    executed: bool
    status: Optional[PayoutStatus] = None
    outcome: Optional[TransferOutcome] = None
    reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return not self.executed

    @property
    def completed(self) -> bool:
        return self.status == PayoutStatus.COMPLETED


class PayoutProcessor:
    """Drives payouts through the transfer gateway."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[TransferGateway] = None,
        max_attempts: Optional[int] = None,
        transfer_timeout: Optional[float] = None,
    ):
        self.db = db
        self.gateway = gateway or get_transfer_gateway()
        self.max_attempts = settings.PAYOUT_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.transfer_timeout = (
            settings.PAYOUT_TRANSFER_TIMEOUT_SECONDS if transfer_timeout is None else transfer_timeout
        )
        self.audit = AuditService(db)

    # ==================== Execution ====================

    async def execute(self, payout_id: uuid.UUID, actor: Optional[str] = None) -> ExecutionResult:
        """
        Execute a PENDING payout.

        Returns a skipped result when another worker already claimed it.

        Raises:
            PayoutNotFoundError: payout does not exist
        """
        return await self._run(payout_id, PayoutStatus.PENDING, actor=actor)

    async def retry_failed(
        self,
        failed_before: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> List[ExecutionResult]:
        """
        Retry every transiently failed payout below the attempt bound.

        Payouts that used up their attempts are flagged for review first and
        left alone. `failed_before` skips payouts that failed after that
        instant, so a settlement run does not retry its own fresh failures.
        """
        await self._flag_exhausted(actor)

        stmt = (
            select(Payout.id)
            .where(
                Payout.status == PayoutStatus.FAILED,
                Payout.failure_kind == FailureKind.TRANSIENT,
                Payout.requires_review.is_(False),
                Payout.attempt_count < self.max_attempts,
            )
            .order_by(Payout.updated_at.asc())
        )
        if failed_before is not None:
            stmt = stmt.where(Payout.failed_at < as_utc(failed_before))
        result = await self.db.execute(stmt)
        payout_ids = list(result.scalars().all())
        await self.db.commit()

        results = []
        for payout_id in payout_ids:
            results.append(await self._run(payout_id, PayoutStatus.FAILED, actor=actor, automatic=True))

        if payout_ids:
            retried = sum(1 for r in results if r.executed)
            logger.info(f"Retried {retried}/{len(payout_ids)} failed payouts")
        return results

    async def manual_retry(self, payout_id: uuid.UUID, actor: Optional[str] = None) -> ExecutionResult:
        """
        Operator retry of a FAILED payout.

        Ignores the automatic attempt bound and clears the review flag; used
        after a human has corrected the vendor account.

        Raises:
            PayoutNotFoundError: payout does not exist
            InvalidPayoutStateError: payout is not FAILED
        """
        payout = await self.get_payout(payout_id)
        if payout.status != PayoutStatus.FAILED:
            raise InvalidPayoutStateError(payout_id, payout.status.value, "retry")
        # Snapshot the account again in case the policy was corrected
        policy = await self.db.execute(
            select(PayoutPolicy.account_reference)
            .where(PayoutPolicy.vendor_id == payout.vendor_id)
        )
        row = policy.first()
        await self.db.commit()

        return await self._run(
            payout_id,
            PayoutStatus.FAILED,
            actor=actor,
            account_reference=row.account_reference if row else None,
        )

    async def execute_pending_for_vendor(
        self,
        vendor_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> List[ExecutionResult]:
        """Execute every PENDING payout of a vendor, oldest first."""
        result = await self.db.execute(
            select(Payout.id)
            .where(Payout.vendor_id == vendor_id, Payout.status == PayoutStatus.PENDING)
            .order_by(Payout.created_at.asc())
        )
        payout_ids = list(result.scalars().all())
        await self.db.commit()
        return [await self.execute(payout_id, actor=actor) for payout_id in payout_ids]

    async def _run(
        self,
        payout_id: uuid.UUID,
        from_status: PayoutStatus,
        actor: Optional[str] = None,
        automatic: bool = False,
        account_reference: Optional[str] = None,
    ) -> ExecutionResult:
        payout = await self._claim(payout_id, from_status, actor, automatic, account_reference)
        if payout is None:
            return ExecutionResult(payout_id=payout_id, executed=False)

        transfer = await self._transfer(payout)

        if transfer.outcome == TransferOutcome.SUCCESS:
            status = await self._complete(payout, transfer, actor)
        else:
            status = await self._fail(payout, transfer, actor)

        return ExecutionResult(
            payout_id=payout_id,
            executed=True,
            status=status,
            outcome=transfer.outcome,
            reason=transfer.reason,
        )

    async def _claim(
        self,
        payout_id: uuid.UUID,
        from_status: PayoutStatus,
        actor: Optional[str],
        automatic: bool,
        account_reference: Optional[str],
    ) -> Optional[Payout]:
        """CAS from_status -> PROCESSING. Returns None when the claim is lost."""
        now = utcnow()
        values = {
            "status": PayoutStatus.PROCESSING,
            "processing_started_at": now,
            "attempt_count": Payout.attempt_count + 1,
            "updated_at": now,
        }
        if from_status == PayoutStatus.FAILED and not automatic:
            values["requires_review"] = False
            if account_reference:
                values["account_reference"] = account_reference

        stmt = update(Payout).where(Payout.id == payout_id, Payout.status == from_status)
        if automatic:
            stmt = stmt.where(
                Payout.failure_kind == FailureKind.TRANSIENT,
                Payout.requires_review.is_(False),
                Payout.attempt_count < self.max_attempts,
            )

        try:
            result = await self.db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                current = await self.db.get(Payout, payout_id, populate_existing=True)
                await self.db.commit()
                if current is None:
                    raise PayoutNotFoundError(payout_id)
                logger.info(
                    f"Payout {payout_id} not claimed: expected {from_status.value}, "
                    f"found {current.status.value}"
                )
                return None

            payout = await self.db.get(Payout, payout_id, populate_existing=True)
            await self.audit.log(
                action=AuditEventType.PAYOUT_PROCESSING,
                entity_type=AuditEntityType.PAYOUT,
                entity_id=payout.id,
                vendor_id=payout.vendor_id,
                actor=actor,
                old_values={"status": from_status},
                new_values={"status": PayoutStatus.PROCESSING, "attempt_count": payout.attempt_count},
                description=f"Attempt {payout.attempt_count} for {payout.amount}",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return payout

    async def _transfer(self, payout: Payout) -> TransferResult:
        try:
            return await asyncio.wait_for(
                self.gateway.transfer(
                    account_reference=payout.account_reference,
                    amount=payout.amount,
                    method=payout.method,
                    idempotency_key=str(payout.id),
                ),
                timeout=self.transfer_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Transfer for payout {payout.id} timed out after {self.transfer_timeout}s")
            return TransferResult.transient(f"Transfer timed out after {self.transfer_timeout}s")
        except TransientTransferFailure as e:
            return TransferResult.transient(e.reason, gateway_code=e.gateway_code)
        except PermanentTransferFailure as e:
            return TransferResult.permanent(e.reason, gateway_code=e.gateway_code)

    async def _complete(self, payout: Payout, transfer: TransferResult, actor: Optional[str]) -> PayoutStatus:
        now = utcnow()
        payout_id, attempt = payout.id, payout.attempt_count
        try:
            current = (await self.db.execute(
                select(Payout.status, Payout.attempt_count).where(Payout.id == payout_id)
            )).one()
            if current.status == PayoutStatus.COMPLETED:
                await self.db.commit()
                logger.info(
                    f"Payout {payout_id} already completed, attempt {attempt} "
                    f"confirmed {transfer.reference}"
                )
                return PayoutStatus.COMPLETED
            if current.attempt_count != attempt:
                # Same idempotency key, so the live claim cannot pay again
                logger.warning(
                    f"Payout {payout_id} completed by attempt {attempt} "
                    f"while attempt {current.attempt_count} holds the claim"
                )

            # A stuck-payout sweep may have demoted it while the transfer was in flight
            result = await self.db.execute(
                update(Payout)
                .where(
                    Payout.id == payout.id,
                    Payout.status.in_([PayoutStatus.PROCESSING, PayoutStatus.FAILED]),
                )
                .values(
                    status=PayoutStatus.COMPLETED,
                    processed_at=now,
                    gateway_reference=transfer.reference,
                    failure_kind=None,
                    failure_reason=None,
                    requires_review=False,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Money moved but the payout is in an unexpected state
                logger.error(
                    f"Payout {payout_id} transferred ({transfer.reference}) "
                    f"but could not be marked COMPLETED"
                )
                await self.db.rollback()
                current = await self.db.get(Payout, payout_id, populate_existing=True)
                await self.db.commit()
                return current.status

            await self.db.execute(
                update(CommissionEntry)
                .where(CommissionEntry.payout_id == payout.id)
                .values(status=CommissionStatus.PAID, paid_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                update(PayoutPolicy)
                .where(PayoutPolicy.vendor_id == payout.vendor_id)
                .values(last_payout_date=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.audit.log(
                action=AuditEventType.PAYOUT_COMPLETED,
                entity_type=AuditEntityType.PAYOUT,
                entity_id=payout.id,
                vendor_id=payout.vendor_id,
                actor=actor,
                old_values={"status": PayoutStatus.PROCESSING},
                new_values={
                    "status": PayoutStatus.COMPLETED,
                    "gateway_reference": transfer.reference,
                    "amount": payout.amount,
                },
                description=f"Paid {payout.amount} ({payout.entry_count} entries)",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Payout {payout.id} completed: {payout.amount} ref={transfer.reference}")
        return PayoutStatus.COMPLETED

    async def _fail(self, payout: Payout, transfer: TransferResult, actor: Optional[str]) -> PayoutStatus:
        now = utcnow()
        payout_id, attempt = payout.id, payout.attempt_count
        permanent = transfer.outcome == TransferOutcome.PERMANENT_FAILURE
        failure_kind = FailureKind.PERMANENT if permanent else FailureKind.TRANSIENT
        requires_review = permanent or payout.attempt_count >= self.max_attempts

        try:
            result = await self.db.execute(
                update(Payout)
                .where(
                    Payout.id == payout.id,
                    Payout.status.in_([PayoutStatus.PROCESSING, PayoutStatus.FAILED]),
                    Payout.attempt_count == attempt,
                )
                .values(
                    status=PayoutStatus.FAILED,
                    failure_kind=failure_kind,
                    failure_reason=transfer.reason,
                    failed_at=now,
                    requires_review=requires_review,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                current = await self.db.get(Payout, payout_id, populate_existing=True)
                await self.db.commit()
                logger.warning(
                    f"Payout {payout_id} attempt {attempt} failure not recorded: "
                    f"status is {current.status.value} at attempt {current.attempt_count}"
                )
                return current.status

            await self.audit.log(
                action=AuditEventType.PAYOUT_FAILED,
                entity_type=AuditEntityType.PAYOUT,
                entity_id=payout.id,
                vendor_id=payout.vendor_id,
                actor=actor,
                old_values={"status": PayoutStatus.PROCESSING},
                new_values={
                    "status": PayoutStatus.FAILED,
                    "failure_kind": failure_kind,
                    "failure_reason": transfer.reason,
                    "gateway_code": transfer.gateway_code,
                    "attempt_count": payout.attempt_count,
                    "requires_review": requires_review,
                },
                description=f"{failure_kind.value} failure on attempt {payout.attempt_count}",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if permanent:
            logger.error(f"Payout {payout.id} failed permanently: {transfer.reason}")
        else:
            logger.warning(
                f"Payout {payout.id} failed (attempt {payout.attempt_count}/{self.max_attempts}): "
                f"{transfer.reason}"
            )
        return PayoutStatus.FAILED

    # ==================== Recovery ====================

    async def _flag_exhausted(self, actor: Optional[str]) -> int:
        result = await self.db.execute(
            select(Payout)
            .where(
                Payout.status == PayoutStatus.FAILED,
                Payout.failure_kind == FailureKind.TRANSIENT,
                Payout.requires_review.is_(False),
                Payout.attempt_count >= self.max_attempts,
            )
            .execution_options(populate_existing=True)
        )
        exhausted = list(result.scalars().all())
        try:
            for payout in exhausted:
                payout.requires_review = True
                await self.audit.log(
                    action=AuditEventType.PAYOUT_REVIEW_FLAGGED,
                    entity_type=AuditEntityType.PAYOUT,
                    entity_id=payout.id,
                    vendor_id=payout.vendor_id,
                    actor=actor,
                    new_values={"requires_review": True, "attempt_count": payout.attempt_count},
                    description=f"Gave up after {payout.attempt_count} attempts",
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        for payout in exhausted:
            logger.warning(f"Payout {payout.id} needs review after {payout.attempt_count} attempts")
        return len(exhausted)

    async def reconcile_stuck(
        self,
        now: Optional[datetime] = None,
        stale_after: Optional[timedelta] = None,
        actor: Optional[str] = None,
    ) -> int:
        """
        Demote payouts stuck in PROCESSING to FAILED (transient).

        A worker that died mid-transfer leaves the payout in PROCESSING. The
        attempt was already counted at claim time; retrying reuses the same
        idempotency key, so a transfer that did go through is not repeated.

        Returns:
            Number of payouts demoted
        """
        now = as_utc(now) or utcnow()
        stale_after = stale_after or timedelta(minutes=settings.PAYOUT_PROCESSING_STALE_MINUTES)
        cutoff = now - stale_after

        result = await self.db.execute(
            select(Payout.id, Payout.vendor_id, Payout.attempt_count, Payout.processing_started_at)
            .where(
                Payout.status == PayoutStatus.PROCESSING,
                Payout.processing_started_at < cutoff,
            )
        )
        stuck = result.all()
        await self.db.commit()

        demoted = 0
        for row in stuck:
            requires_review = row.attempt_count >= self.max_attempts
            try:
                update_result = await self.db.execute(
                    update(Payout)
                    .where(
                        Payout.id == row.id,
                        Payout.status == PayoutStatus.PROCESSING,
                        Payout.processing_started_at == row.processing_started_at,
                    )
                    .values(
                        status=PayoutStatus.FAILED,
                        failure_kind=FailureKind.TRANSIENT,
                        failure_reason=STUCK_PROCESSING_REASON,
                        failed_at=now,
                        requires_review=requires_review,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if update_result.rowcount != 1:
                    await self.db.rollback()
                    continue

                await self.audit.log(
                    action=AuditEventType.PAYOUT_FAILED,
                    entity_type=AuditEntityType.PAYOUT,
                    entity_id=row.id,
                    vendor_id=row.vendor_id,
                    actor=actor,
                    old_values={"status": PayoutStatus.PROCESSING},
                    new_values={
                        "status": PayoutStatus.FAILED,
                        "failure_kind": FailureKind.TRANSIENT,
                        "failure_reason": STUCK_PROCESSING_REASON,
                        "requires_review": requires_review,
                    },
                    description=f"Stuck in PROCESSING since {row.processing_started_at.isoformat()}",
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

            demoted += 1
            logger.warning(f"Payout {row.id} stuck in PROCESSING since {row.processing_started_at}, demoted to FAILED")

        return demoted

    # ==================== Queries ====================

    async def get_payout(self, payout_id: uuid.UUID) -> Payout:
        payout = await self.db.get(Payout, payout_id, populate_existing=True)
        if payout is None:
            raise PayoutNotFoundError(payout_id)
        return payout

    async def list_payouts(
        self,
        vendor_id: Optional[uuid.UUID] = None,
        status: Optional[PayoutStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[List[Payout], int]:
        stmt = (
            select(Payout)
            .order_by(Payout.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if vendor_id:
            stmt = stmt.where(Payout.vendor_id == vendor_id)
        if status:
            stmt = stmt.where(Payout.status == status)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar()

        result = await self.db.execute(stmt.offset(skip).limit(limit))
        return list(result.scalars().all()), total

    async def list_for_review(self, vendor_id: Optional[uuid.UUID] = None) -> Sequence[Payout]:
        """FAILED payouts excluded from automatic retry."""
        stmt = (
            select(Payout)
            .where(Payout.status == PayoutStatus.FAILED, Payout.requires_review.is_(True))
            .order_by(Payout.updated_at.asc())
            .execution_options(populate_existing=True)
        )
        if vendor_id:
            stmt = stmt.where(Payout.vendor_id == vendor_id)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def get_entries(self, payout_id: uuid.UUID) -> Sequence[CommissionEntry]:
        """Commission entries absorbed by a payout."""
        result = await self.db.execute(
            select(CommissionEntry)
            .where(CommissionEntry.payout_id == payout_id)
            .order_by(CommissionEntry.created_at.asc(), CommissionEntry.id.asc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()
