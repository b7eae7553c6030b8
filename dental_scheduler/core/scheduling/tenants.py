"""
Tenant resolution.

Maps a tenant (cabinet) identifier to a TenantHandle: the cabinet's
settings plus the SchedulingStore holding its data.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from dental_scheduler.config import settings
from dental_scheduler.core.scheduling.errors import ResourceNotFound
from dental_scheduler.core.scheduling.sql_store import SqlSchedulingStore
from dental_scheduler.core.scheduling.store import SchedulingStore
from dental_scheduler.infra.database import create_engine, create_session_factory, get_db_context
from dental_scheduler.models.database import Cabinet

logger = logging.getLogger(__name__)

# Applied when a cabinet has not configured opening hours
DEFAULT_BUSINESS_HOURS: dict[str, Optional[dict[str, str]]] = {
    "monday": {"open": "08:00", "close": "18:00"},
    "tuesday": {"open": "08:00", "close": "18:00"},
    "wednesday": {"open": "08:00", "close": "18:00"},
    "thursday": {"open": "08:00", "close": "18:00"},
    "friday": {"open": "08:00", "close": "18:00"},
    "saturday": {"open": "09:00", "close": "13:00"},
    "sunday": None,
}


@dataclass
class TenantHandle:
    """Resolved tenant: settings plus its isolated store."""

    tenant_id: str
    name: str
    store: SchedulingStore
    timezone: str = field(default_factory=lambda: settings.default_timezone)
    business_hours: dict = field(default_factory=lambda: dict(DEFAULT_BUSINESS_HOURS))
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    def hours_for(self, weekday: str) -> Optional[dict[str, str]]:
        """Opening hours for a weekday, or None when closed."""
        hours = self.business_hours.get(weekday)
        if not hours or not hours.get("open") or not hours.get("close"):
            return None
        return hours

    def to_dict(self) -> dict:
        """Public cabinet details."""
        return {
            "id": self.tenant_id,
            "name": self.name,
            "timezone": self.timezone,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "business_hours": self.business_hours,
        }


class TenantResolver(ABC):
    """Resolves tenant identifiers to handles."""

    @abstractmethod
    async def resolve(self, tenant_id: str) -> TenantHandle:
        """
        Resolve a tenant.

        Raises:
            ResourceNotFound: If the tenant is unknown or inactive
        """

    async def close(self) -> None:
        """Release stores and engines."""


class StaticTenantResolver(TenantResolver):
    """
    Fixed mapping of tenant ids to handles.

    Usage:
        resolver = StaticTenantResolver([
            TenantHandle(tenant_id="cab-1", name="Smile Clinic", store=InMemorySchedulingStore()),
        ])
    """

    def __init__(self, handles: Optional[list[TenantHandle]] = None):
        self._handles = {handle.tenant_id: handle for handle in handles or []}

    def register(self, handle: TenantHandle) -> None:
        self._handles[handle.tenant_id] = handle

    async def resolve(self, tenant_id: str) -> TenantHandle:
        handle = self._handles.get(tenant_id)
        if handle is None:
            raise ResourceNotFound("cabinet", tenant_id)
        return handle

    async def close(self) -> None:
        for handle in self._handles.values():
            await handle.store.close()


class SqlTenantResolver(TenantResolver):
    """
    Resolves cabinets from the main database.

    A cabinet with its own database_url gets a dedicated pooled engine,
    created once and reused. Other cabinets share the main engine and are
    isolated by cabinet_id.
    """

    CACHE_TTL = 300  # seconds

    def __init__(
        self,
        shared_engine: AsyncEngine,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        """Initialize resolver.

        Args:
            shared_engine: Engine of the main database
            session_factory: Sessions for the cabinet registry (defaults to sessions on shared_engine)
        """
        self._shared_engine = shared_engine
        self._session_factory = session_factory or create_session_factory(shared_engine)
        self._engines: dict[str, AsyncEngine] = {}
        self._cache: dict[str, tuple[float, TenantHandle]] = {}

    async def resolve(self, tenant_id: str) -> TenantHandle:
        cached = self._cache.get(tenant_id)
        if cached and time.monotonic() - cached[0] < self.CACHE_TTL:
            return cached[1]

        async with get_db_context(self._session_factory) as db:
            stmt = select(Cabinet).where(
                or_(Cabinet.id == tenant_id, Cabinet.slug == tenant_id)
            )
            cabinet = (await db.execute(stmt)).scalar_one_or_none()

        if cabinet is None or not cabinet.is_active:
            logger.warning(f"Unknown or inactive cabinet: {tenant_id}")
            raise ResourceNotFound("cabinet", tenant_id)

        handle = TenantHandle(
            tenant_id=cabinet.id,
            name=cabinet.name,
            store=self._store_for(cabinet),
            timezone=cabinet.timezone or settings.default_timezone,
            business_hours=cabinet.business_hours or dict(DEFAULT_BUSINESS_HOURS),
            address=cabinet.address,
            phone=cabinet.phone,
            email=cabinet.email,
        )
        self._cache[tenant_id] = (time.monotonic(), handle)
        return handle

    def _store_for(self, cabinet: Cabinet) -> SqlSchedulingStore:
        if not cabinet.database_url:
            return SqlSchedulingStore(self._shared_engine, cabinet.id)

        engine = self._engines.get(cabinet.database_url)
        if engine is None:
            engine = create_engine(cabinet.database_url)
            self._engines[cabinet.database_url] = engine
            logger.info(f"Created dedicated engine for cabinet {cabinet.id}")
        return SqlSchedulingStore(engine, cabinet.id)

    async def close(self) -> None:
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()
        self._cache.clear()
