"""
Scheduling Module

Availability calculation, conflict-safe booking, tenant resolution and the
stores they run against.

Usage:
    from dental_scheduler.core.scheduling import (
        AvailabilityService,
        BookingTransactionManager,
        InMemorySchedulingStore,
        StaticTenantResolver,
        TenantHandle,
    )

    store = InMemorySchedulingStore()
    tenants = StaticTenantResolver([TenantHandle("cabinet-1", "Main Street", store)])

    availability = AvailabilityService(tenants)
    result = await availability.check_availability("cabinet-1", "2024-01-15", "cleaning")

    booking = BookingTransactionManager(tenants)
    appointment = await booking.book_appointment(
        tenant_id="cabinet-1",
        patient_email="jane@example.com",
        practitioner_id=result.slots[0].practitioner_id,
        service_type="cleaning",
        date="2024-01-15",
        time=result.slots[0].start_time.strftime("%H:%M"),
    )
"""

# Errors
from dental_scheduler.core.scheduling.errors import (
    SchedulingError,
    ValidationError,
    ResourceNotFound,
    ConflictError,
    InternalError,
)

# Domain Types
from dental_scheduler.core.scheduling.types import (
    AppointmentResult,
    AvailabilityResult,
    ConflictEntry,
    PatientInfo,
    PractitionerInfo,
    ServiceInfo,
    Slot,
    TimeWindow,
)

# Stores
from dental_scheduler.core.scheduling.store import SchedulingStore, StoreTransaction, run_transaction
from dental_scheduler.core.scheduling.memory_store import InMemorySchedulingStore
from dental_scheduler.core.scheduling.sql_store import SqlSchedulingStore

# Tenants
from dental_scheduler.core.scheduling.tenants import (
    DEFAULT_BUSINESS_HOURS,
    TenantHandle,
    TenantResolver,
    StaticTenantResolver,
    SqlTenantResolver,
)

# Services
from dental_scheduler.core.scheduling.availability import AvailabilityService, compute_slots
from dental_scheduler.core.scheduling.booking import BookingTransactionManager
from dental_scheduler.core.scheduling.patients import PatientDirectory, find_or_create_patient
from dental_scheduler.core.scheduling.cabinet import CabinetDirectory, CabinetInfo

__all__ = [
    # Errors
    "SchedulingError",
    "ValidationError",
    "ResourceNotFound",
    "ConflictError",
    "InternalError",
    # Types
    "AppointmentResult",
    "AvailabilityResult",
    "ConflictEntry",
    "PatientInfo",
    "PractitionerInfo",
    "ServiceInfo",
    "Slot",
    "TimeWindow",
    # Stores
    "SchedulingStore",
    "StoreTransaction",
    "run_transaction",
    "InMemorySchedulingStore",
    "SqlSchedulingStore",
    # Tenants
    "DEFAULT_BUSINESS_HOURS",
    "TenantHandle",
    "TenantResolver",
    "StaticTenantResolver",
    "SqlTenantResolver",
    # Services
    "AvailabilityService",
    "compute_slots",
    "BookingTransactionManager",
    "PatientDirectory",
    "find_or_create_patient",
    "CabinetDirectory",
    "CabinetInfo",
]
