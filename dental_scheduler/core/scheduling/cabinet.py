"""Read-only cabinet information used by informational intents."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from dental_scheduler.config import settings
from dental_scheduler.core.scheduling.store import run_transaction
from dental_scheduler.core.scheduling.tenants import TenantResolver
from dental_scheduler.core.scheduling.types import PractitionerInfo, ServiceInfo

logger = logging.getLogger(__name__)


@dataclass
class CabinetInfo:
    """Public details of one cabinet."""

    id: str
    name: str
    timezone: str
    business_hours: dict
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    services: list[ServiceInfo] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "timezone": self.timezone,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "business_hours": self.business_hours,
            "services": [service.to_dict() for service in self.services],
        }


class CabinetDirectory:
    """Practitioner listings and cabinet details."""

    def __init__(self, tenant_resolver: TenantResolver, transaction_timeout: Optional[float] = None):
        self._tenants = tenant_resolver
        self._timeout = transaction_timeout or settings.transaction_timeout_seconds

    async def list_practitioners(
        self,
        tenant_id: str,
        specialty: Optional[str] = None,
    ) -> list[PractitionerInfo]:
        """Active practitioners, optionally filtered by specialization."""
        tenant = await self._tenants.resolve(tenant_id)

        async def listing(tx):
            return await tx.list_practitioners(specialization=specialty)

        return await run_transaction(tenant.store, listing, self._timeout)

    async def get_info(self, tenant_id: str) -> CabinetInfo:
        """Contact details, opening hours and services."""
        tenant = await self._tenants.resolve(tenant_id)

        async def services(tx):
            return await tx.list_services()

        return CabinetInfo(
            id=tenant.tenant_id,
            name=tenant.name,
            timezone=tenant.timezone,
            business_hours=tenant.business_hours,
            address=tenant.address,
            phone=tenant.phone,
            email=tenant.email,
            services=await run_transaction(tenant.store, services, self._timeout),
        )
