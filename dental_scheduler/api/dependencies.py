"""
API dependency wiring.

Services are built once at startup and kept on app.state; routes receive
them through FastAPI dependencies instead of global accessors.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from dental_scheduler.core.dialogue.orchestrator import DialogueOrchestrator
from dental_scheduler.core.intelligence.intent.extractor import IntentExtractor
from dental_scheduler.core.intelligence.session.manager import SessionManager
from dental_scheduler.core.intelligence.session.models import ChatUser
from dental_scheduler.core.scheduling.availability import AvailabilityService
from dental_scheduler.core.scheduling.booking import BookingTransactionManager
from dental_scheduler.core.scheduling.cabinet import CabinetDirectory
from dental_scheduler.core.scheduling.patients import PatientDirectory
from dental_scheduler.core.scheduling.tenants import TenantResolver
from dental_scheduler.infra.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Application services shared by all requests."""

    tenants: TenantResolver
    availability: AvailabilityService
    booking: BookingTransactionManager
    cabinet: CabinetDirectory
    patients: PatientDirectory
    sessions: SessionManager
    orchestrator: Optional[DialogueOrchestrator] = None
    extractor: Optional[IntentExtractor] = None

    @classmethod
    def build(
        cls,
        tenants: TenantResolver,
        notifications: Optional[NotificationDispatcher] = None,
        extractor: Optional[IntentExtractor] = None,
        sessions: Optional[SessionManager] = None,
    ) -> "Services":
        """
        Wire services around one tenant resolver.

        Args:
            tenants: Tenant resolver
            notifications: Dispatcher for booking notifications (none sent when omitted)
            extractor: Intent extractor (chat disabled when omitted)
            sessions: Session manager (Redis-backed by default)
        """
        availability = AvailabilityService(tenants)
        booking = BookingTransactionManager(tenants, notifications=notifications)
        cabinet = CabinetDirectory(tenants)
        patients = PatientDirectory(tenants)

        orchestrator = None
        if extractor is not None:
            orchestrator = DialogueOrchestrator(
                availability=availability,
                booking=booking,
                cabinet_directory=cabinet,
                extractor=extractor,
            )
        else:
            logger.warning("No intent extractor configured - chat endpoint disabled")

        return cls(
            tenants=tenants,
            availability=availability,
            booking=booking,
            cabinet=cabinet,
            patients=patients,
            sessions=sessions or SessionManager(),
            orchestrator=orchestrator,
            extractor=extractor,
        )


def get_services(request: Request) -> Services:
    """Services built in the application lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return services


def get_tenant_id(
    x_tenant_id: str = Header(
        ...,
        alias="X-Tenant-ID",
        description="Cabinet/tenant identifier",
    ),
) -> str:
    """Tenant of the request."""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return tenant_id


def get_current_user(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
    x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
    x_cabinet_ids: Optional[str] = Header(default=None, alias="X-Cabinet-IDs"),
) -> ChatUser:
    """
    Acting user from the identity headers set by the upstream gateway.

    Requests without X-User-ID act as an anonymous patient.
    """
    cabinets = [part.strip() for part in (x_cabinet_ids or "").split(",") if part.strip()]
    return ChatUser(
        user_id=(x_user_id or "anonymous").strip(),
        role=(x_user_role or "patient").strip().lower(),
        email=x_user_email,
        assigned_cabinets=cabinets,
    )
