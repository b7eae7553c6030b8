"""Shared fixtures: one cabinet on an in-memory store."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from dental_scheduler.core.scheduling.memory_store import InMemorySchedulingStore
from dental_scheduler.core.scheduling.tenants import StaticTenantResolver, TenantHandle
from dental_scheduler.core.scheduling.types import (
    AppointmentResult,
    PatientInfo,
    PractitionerInfo,
    ServiceInfo,
)
from dental_scheduler.infra.notifications import InMemoryNotificationDispatcher
from dental_scheduler.models.database import AppointmentStatus

TENANT_ID = "cabinet-1"


@pytest.fixture
def store():
    """Cabinet store with two practitioners, two services and one patient."""
    store = InMemorySchedulingStore(TENANT_ID)
    store.add_practitioner(
        PractitionerInfo(id="prac-1", name="Dr Alice Martin", specialization="general")
    )
    store.add_practitioner(
        PractitionerInfo(id="prac-2", name="Dr Bruno Petit", specialization="orthodontics")
    )
    store.add_service(
        ServiceInfo(id="svc-clean", name="Cleaning", duration_minutes=30, category="hygiene")
    )
    store.add_service(
        ServiceInfo(id="svc-consult", name="Consultation", duration_minutes=45, category="general")
    )
    store.add_patient(PatientInfo(id="pat-1", email="jane@example.com", first_name="Jane"))
    return store


@pytest.fixture
def tenants(store):
    """Resolver for the single UTC cabinet."""
    return StaticTenantResolver([
        TenantHandle(
            tenant_id=TENANT_ID,
            name="Smile Dental",
            store=store,
            timezone="UTC",
            phone="+33 1 23 45 67 89",
        )
    ])


@pytest.fixture
def notifications():
    return InMemoryNotificationDispatcher()


@pytest.fixture
def seed(store):
    """Insert an appointment directly, bypassing conflict checks."""

    def _seed(
        start: str,
        minutes: int = 30,
        practitioner_id: str = "prac-1",
        patient_id: str = "pat-1",
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
    ) -> AppointmentResult:
        start_utc = datetime.strptime(start, "%Y-%m-%d %H:%M").replace(tzinfo=timezone.utc)
        return store.add_appointment(
            AppointmentResult(
                id=str(uuid4()),
                patient_id=patient_id,
                practitioner_id=practitioner_id,
                service_type="cleaning",
                scheduled_at=start_utc.replace(tzinfo=None),
                start_utc=start_utc,
                end_utc=start_utc + timedelta(minutes=minutes),
                timezone="UTC",
                duration_minutes=minutes,
                status=status,
            )
        )

    return _seed
