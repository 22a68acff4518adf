"""
Pytest configuration and shared fixtures for the settlement engine tests.

Every test gets its own SQLite database file, a scripted transfer gateway
and a fresh vendor lock registry.
"""
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("SETTLEMENT_SCHEDULER_ENABLED", "false")
os.environ.setdefault("RAZORPAYX_KEY_ID", "")
os.environ.setdefault("RAZORPAYX_KEY_SECRET", "")

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Union

import httpx
import pytest

from settlement.core.locks import VendorLockRegistry
from settlement.core.security import ActorRole, create_access_token
from settlement.database import build_engine, build_session_factory, init_db
from settlement.models.commission import CommissionEntry, CommissionStatus, RateType, RateSource
from settlement.models.payout import PayoutFrequency
from settlement.services.payout_policy import PayoutPolicyService
from settlement.services.transfer_gateway import TransferGateway, TransferResult


NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeGateway(TransferGateway):
    """
    Transfer gateway with scripted outcomes.

    Each call pops the next scripted result (a TransferResult or an
    exception to raise); once the script is empty every call succeeds.
    """

    def __init__(self, script: Optional[List[Union[TransferResult, Exception]]] = None, delay: float = 0):
        self.script = list(script or [])
        self.delay = delay
        self.calls: List[dict] = []

    async def transfer(self, account_reference, amount, method, idempotency_key) -> TransferResult:
        self.calls.append({
            "account_reference": account_reference,
            "amount": amount,
            "method": method,
            "idempotency_key": idempotency_key,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return TransferResult.success(f"ref_{idempotency_key[:8]}")


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def locks() -> VendorLockRegistry:
    return VendorLockRegistry()


@pytest.fixture
def vendor_id() -> uuid.UUID:
    return uuid.uuid4()


async def add_entry(
    db,
    vendor_id: uuid.UUID,
    amount: str,
    created_at: Optional[datetime] = None,
) -> CommissionEntry:
    """Insert a CALCULATED entry of an exact amount."""
    entry = CommissionEntry(
        vendor_id=vendor_id,
        order_id=uuid.uuid4(),
        order_total=Decimal(amount) * 10,
        rate=Decimal("10"),
        rate_type=RateType.PERCENTAGE,
        rate_source=RateSource.VENDOR,
        amount=Decimal(amount),
        status=CommissionStatus.CALCULATED,
        settled_at=created_at or NOW,
        created_at=created_at or NOW,
    )
    db.add(entry)
    await db.commit()
    return entry


async def add_due_policy(
    db,
    vendor_id: uuid.UUID,
    minimum_payout: str = "50.00",
    frequency: PayoutFrequency = PayoutFrequency.WEEKLY,
    account_reference: Optional[str] = "fa_test_account",
):
    """Policy whose next payout date has already passed."""
    policy = await PayoutPolicyService(db).upsert_policy(
        vendor_id,
        frequency=frequency,
        minimum_payout=Decimal(minimum_payout),
        account_reference=account_reference,
        next_scheduled=NOW - timedelta(hours=1),
        actor="test",
        now=NOW,
    )
    await db.commit()
    return policy


def auth_headers(role: ActorRole, vendor_id: Optional[uuid.UUID] = None) -> dict:
    token = create_access_token(uuid.uuid4(), role, vendor_id=vendor_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_factory, gateway, locks):
    from settlement.api.deps import get_gateway, get_session_factory, get_vendor_locks
    from settlement.database import get_db
    from settlement.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_vendor_locks] = lambda: locks

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
