"""
Transactional store contract.

The booking manager and availability service never talk to a database
directly. They open one short-lived transaction per operation:

    async with store.transaction() as tx:
        practitioner = await tx.lock_practitioner(practitioner_id)
        conflicts = await tx.find_overlapping(practitioner_id, start, end)
        ...

Leaving the block normally commits; an exception rolls back. Locks taken
inside the block are released when it exits either way.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, Awaitable, Callable, Iterable, Optional, TypeVar

from dental_scheduler.core.scheduling.errors import InternalError, SchedulingError
from dental_scheduler.core.scheduling.types import (
    AppointmentResult,
    BookedInterval,
    ConflictEntry,
    PatientInfo,
    PractitionerInfo,
    ServiceInfo,
)
from dental_scheduler.models.database import AppointmentStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreTransaction(ABC):
    """Operations available inside one store transaction."""

    @abstractmethod
    async def lock_practitioner(self, practitioner_id: str) -> Optional[PractitionerInfo]:
        """Row-lock a practitioner for the rest of the transaction.

        Returns:
            The practitioner, or None if it does not exist
        """

    @abstractmethod
    async def find_overlapping(
        self,
        practitioner_id: str,
        start_utc: datetime,
        end_utc: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[ConflictEntry]:
        """Active appointments of a practitioner overlapping [start_utc, end_utc)."""

    @abstractmethod
    async def insert_appointment(self, appointment: AppointmentResult) -> AppointmentResult:
        """Persist a new appointment."""

    @abstractmethod
    async def get_appointment(
        self,
        appointment_id: str,
        for_update: bool = False,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
    ) -> Optional[AppointmentResult]:
        """Fetch an appointment, optionally locking it and filtering by status."""

    @abstractmethod
    async def update_appointment_time(
        self,
        appointment_id: str,
        scheduled_at: datetime,
        start_utc: datetime,
        end_utc: datetime,
        timezone: str,
        updated_by: str,
    ) -> AppointmentResult:
        """Move an appointment and bump its version."""

    @abstractmethod
    async def transition_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        from_statuses: Iterable[AppointmentStatus],
        updated_by: str,
        reason: Optional[str] = None,
    ) -> int:
        """Conditionally change status and bump version.

        The update applies only while the current status is one of
        from_statuses.

        Returns:
            Number of rows changed (0 or 1)
        """

    @abstractmethod
    async def find_patient_by_email(self, email: str) -> Optional[PatientInfo]:
        """Case-insensitive patient lookup."""

    @abstractmethod
    async def create_patient(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
    ) -> PatientInfo:
        """Create a patient. Returns the existing one if the email was taken concurrently."""

    @abstractmethod
    async def find_service(self, service_type: str) -> Optional[ServiceInfo]:
        """First active service whose name or category contains service_type."""

    @abstractmethod
    async def list_services(self) -> list[ServiceInfo]:
        """All active services."""

    @abstractmethod
    async def list_practitioners(
        self,
        practitioner_id: Optional[str] = None,
        specialization: Optional[str] = None,
        active_only: bool = True,
    ) -> list[PractitionerInfo]:
        """Practitioners ordered by last name."""

    @abstractmethod
    async def list_active_intervals(
        self,
        practitioner_ids: list[str],
        start_utc: datetime,
        end_utc: datetime,
    ) -> list[BookedInterval]:
        """Active appointment intervals intersecting [start_utc, end_utc)."""

    @abstractmethod
    async def find_patient_appointments(
        self,
        email: str,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
    ) -> list[AppointmentResult]:
        """Appointments of the patient with this email, ordered by scheduled_at."""


class SchedulingStore(ABC):
    """One tenant's scheduling data."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """Open a scoped transaction."""

    async def close(self) -> None:
        """Release pooled resources."""


async def run_transaction(
    store: SchedulingStore,
    operation: Callable[[StoreTransaction], Awaitable[T]],
    timeout: float,
) -> T:
    """
    Run operation inside one store transaction, bounded by timeout.

    Scheduling errors raised by the operation propagate unchanged after
    rollback. A timeout or any other failure is reported as InternalError.
    """

    async def scoped() -> T:
        async with store.transaction() as tx:
            return await operation(tx)

    try:
        return await asyncio.wait_for(scoped(), timeout)
    except SchedulingError:
        raise
    except asyncio.TimeoutError as e:
        logger.error(f"Scheduling transaction exceeded {timeout}s")
        raise InternalError("Scheduling transaction timed out", cause=e) from e
    except Exception as e:
        logger.error(f"Scheduling transaction failed: {e}", exc_info=True)
        raise InternalError("Scheduling store failure", cause=e) from e
