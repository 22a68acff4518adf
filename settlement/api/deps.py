from dataclasses import dataclass
from typing import Annotated, Optional
import hmac
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.config import settings
from settlement.core.locks import VendorLockRegistry, vendor_locks
from settlement.core.security import ActorRole, STAFF_ROLES, verify_access_token
from settlement.database import get_db, async_session_factory
from settlement.services.transfer_gateway import TransferGateway, get_transfer_gateway


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


@dataclass
class Actor:
    """Caller identity taken from the access token."""
    id: str
    role: ActorRole
    vendor_id: Optional[uuid.UUID] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def label(self) -> str:
        """Value written to audit_logs.actor."""
        return f"{self.role.value}:{self.id}"

    def can_access_vendor(self, vendor_id: uuid.UUID) -> bool:
        if self.role == ActorRole.VENDOR:
            return self.vendor_id == vendor_id
        return True


CRON_ACTOR = Actor(id="cron", role=ActorRole.SERVICE)


def _actor_from_token(token: str) -> Optional[Actor]:
    claims = verify_access_token(token)
    if claims is None:
        return None

    role = ActorRole(claims["role"])
    vendor_id = None
    if claims.get("vendor_id"):
        try:
            vendor_id = uuid.UUID(claims["vendor_id"])
        except (ValueError, AttributeError, TypeError):
            logger.warning(f"Invalid vendor_id in token: {claims['vendor_id']}")
            return None
    if role == ActorRole.VENDOR and vendor_id is None:
        logger.warning(f"Vendor token without vendor_id for subject {claims.get('sub')}")
        return None

    return Actor(id=str(claims.get("sub")), role=role, vendor_id=vendor_id)


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Dependency to get the current caller.
    Validates the JWT token; users themselves live in the platform's auth service.
    """
    actor = _actor_from_token(credentials.credentials)
    if actor is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def require_roles(*roles: ActorRole):
    """
    Dependency factory to require one of the given roles.

    Usage:
        @router.post("/", dependencies=[Depends(require_roles(ActorRole.ADMIN))])
        async def admin_endpoint():
            ...
    """
    async def role_dependency(
        actor: Annotated[Actor, Depends(get_current_actor)]
    ) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required role: {', '.join(r.value for r in roles)}"
            )
        return actor

    return role_dependency


def ensure_vendor_access(actor: Actor, vendor_id: uuid.UUID) -> None:
    """Vendors may only read and change their own records."""
    if not actor.can_access_vendor(vendor_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to access another vendor's records"
        )


async def get_settlement_trigger(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(optional_security)],
) -> Actor:
    """
    Caller allowed to start a settlement run: an ADMIN token, or the
    external cron sending `Authorization: Bearer <CRON_SECRET>`.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    if settings.CRON_SECRET and hmac.compare_digest(token, settings.CRON_SECRET):
        return CRON_ACTOR

    actor = _actor_from_token(token)
    if actor is None:
        logger.warning("Unauthorized settlement trigger attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if actor.role != ActorRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can trigger settlement"
        )
    return actor


def get_gateway() -> TransferGateway:
    return get_transfer_gateway()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for jobs that open one session per vendor."""
    return async_session_factory


def get_vendor_locks() -> VendorLockRegistry:
    return vendor_locks


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
StaffActor = Annotated[Actor, Depends(require_roles(ActorRole.ADMIN, ActorRole.FINANCE_ANALYST))]
AdminActor = Annotated[Actor, Depends(require_roles(ActorRole.ADMIN))]
RecorderActor = Annotated[
    Actor,
    Depends(require_roles(ActorRole.ADMIN, ActorRole.FINANCE_ANALYST, ActorRole.SERVICE)),
]
SettlementTrigger = Annotated[Actor, Depends(get_settlement_trigger)]
Gateway = Annotated[TransferGateway, Depends(get_gateway)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
VendorLocks = Annotated[VendorLockRegistry, Depends(get_vendor_locks)]
