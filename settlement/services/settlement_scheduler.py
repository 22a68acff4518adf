"""
Settlement Scheduler.

One settlement run:
1. Reconcile payouts stuck in PROCESSING
2. For every vendor with an active policy (bounded concurrency, one
   session per vendor): build a batch, then execute the vendor's PENDING
   payouts. A vendor that raises is recorded in the summary and does not
   affect the others.
3. Retry transiently failed payouts from earlier runs

Invoked by APScheduler, the cron endpoint and the manual admin trigger.
Overlapping runs are safe: batching is serialised per vendor and every
payout claim is a compare-and-set.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.config import settings
from settlement.core.exceptions import ConcurrencyConflict
from settlement.core.locks import VendorLockRegistry, vendor_locks
from settlement.db_types import as_utc, utcnow
from settlement.models.payout import PayoutStatus
from settlement.services.payout_batcher import PayoutBatcher
from settlement.services.payout_policy import PayoutPolicyService
from settlement.services.payout_processor import PayoutProcessor, ExecutionResult
from settlement.services.transfer_gateway import TransferGateway, get_transfer_gateway

logger = logging.getLogger(__name__)


@dataclass
class VendorRunResult:
    vendor_id: uuid.UUID
    payout_id: Optional[uuid.UUID] = None
    executions: List[ExecutionResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.error is None and self.payout_id is None and not any(
            e.executed for e in self.executions
        )


@dataclass
class RunSummary:
    """Counts for one settlement run."""
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    retried: int = 0
    reconciled: int = 0
    vendors: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SettlementScheduler:
    """Runs batching then processing across all eligible vendors."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: Optional[TransferGateway] = None,
        locks: Optional[VendorLockRegistry] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway or get_transfer_gateway()
        self.locks = locks or vendor_locks
        self.max_concurrent = max_concurrent or settings.SETTLEMENT_MAX_CONCURRENT_VENDORS

    async def run(self, now: Optional[datetime] = None, actor: str = "scheduler") -> RunSummary:
        """
        Execute one settlement run.

        Args:
            now: Instant used for due-date checks and stuck detection
            actor: Recorded on every audit row the run writes

        Returns:
            RunSummary with processed (completed payouts), failed (failed
            payouts plus vendors whose run raised), skipped (vendors with
            nothing to do), retried, reconciled and per-vendor errors
        """
        now = as_utc(now) or utcnow()
        summary = RunSummary(started_at=utcnow())
        logger.info(f"Settlement run started (now={now.isoformat()}, actor={actor})")

        try:
            summary.reconciled = await self.reconcile(now, actor=actor)
        except Exception as e:
            logger.exception("Reconciling stuck payouts raised")
            summary.errors.append({"vendor_id": None, "error": f"reconcile_stuck: {e}"})

        async with self.session_factory() as session:
            vendor_ids = await PayoutPolicyService(session).list_active_vendor_ids()
        summary.vendors = len(vendor_ids)

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run_with_limit(vendor_id: uuid.UUID) -> VendorRunResult:
            async with semaphore:
                return await self._run_vendor(vendor_id, now, actor)

        vendor_results = await asyncio.gather(*(run_with_limit(v) for v in vendor_ids))

        for vendor_result in vendor_results:
            if vendor_result.error is not None:
                summary.failed += 1
                summary.errors.append({
                    "vendor_id": str(vendor_result.vendor_id),
                    "error": vendor_result.error,
                })
                continue
            if vendor_result.skipped:
                summary.skipped += 1
                continue
            for execution in vendor_result.executions:
                self._count(summary, execution)

        async with self.session_factory() as session:
            processor = PayoutProcessor(session, gateway=self.gateway)
            try:
                retries = await processor.retry_failed(failed_before=summary.started_at, actor=actor)
            except Exception as e:
                logger.exception("Retrying failed payouts raised")
                summary.errors.append({"vendor_id": None, "error": f"retry_failed: {e}"})
                retries = []
        for execution in retries:
            if execution.executed:
                summary.retried += 1
                self._count(summary, execution)

        summary.finished_at = utcnow()
        logger.info(
            f"Settlement run finished: processed={summary.processed} failed={summary.failed} "
            f"skipped={summary.skipped} retried={summary.retried} reconciled={summary.reconciled} "
            f"errors={len(summary.errors)}"
        )
        return summary

    async def reconcile(self, now: Optional[datetime] = None, actor: str = "scheduler") -> int:
        async with self.session_factory() as session:
            return await PayoutProcessor(session, gateway=self.gateway).reconcile_stuck(now, actor=actor)

    async def _run_vendor(self, vendor_id: uuid.UUID, now: datetime, actor: str) -> VendorRunResult:
        result = VendorRunResult(vendor_id=vendor_id)
        try:
            async with self.session_factory() as session:
                batcher = PayoutBatcher(session, locks=self.locks)
                try:
                    payout = await batcher.build_batch(vendor_id, now=now, actor=actor)
                    if payout is not None:
                        result.payout_id = payout.id
                except ConcurrencyConflict as e:
                    logger.info(f"Vendor {vendor_id}: batch skipped, {e}")

                processor = PayoutProcessor(session, gateway=self.gateway)
                result.executions = await processor.execute_pending_for_vendor(vendor_id, actor=actor)
        except Exception as e:
            # Isolated: other vendors keep running, the error is reported in the summary
            logger.exception(f"Settlement failed for vendor {vendor_id}")
            result.error = f"{type(e).__name__}: {e}"
        return result

    @staticmethod
    def _count(summary: RunSummary, execution: ExecutionResult) -> None:
        if not execution.executed:
            return
        if execution.status == PayoutStatus.COMPLETED:
            summary.processed += 1
        elif execution.status == PayoutStatus.FAILED:
            summary.failed += 1
