"""
In-memory scheduling store.

Used for local development and tests. Row locks are emulated with one
asyncio.Lock per practitioner, appointment or patient email, held until the
transaction exits. Writes are staged in the transaction and published to
the store on commit, so other transactions never read uncommitted rows.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional
from uuid import uuid4

from dental_scheduler.core.scheduling.store import SchedulingStore, StoreTransaction
from dental_scheduler.core.scheduling.timeutils import _utcnow, conflicts_with
from dental_scheduler.core.scheduling.types import (
    AppointmentResult,
    BookedInterval,
    ConflictEntry,
    PatientInfo,
    PractitionerInfo,
    ServiceInfo,
)
from dental_scheduler.models.database import ACTIVE_STATUSES, AppointmentStatus

logger = logging.getLogger(__name__)


class InMemoryTransaction(StoreTransaction):
    """Transaction over an InMemorySchedulingStore."""

    def __init__(self, store: "InMemorySchedulingStore"):
        self._store = store
        self._staged_appointments: dict[str, AppointmentResult] = {}
        self._staged_patients: dict[str, PatientInfo] = {}
        self._held: list[asyncio.Lock] = []

    async def _lock(self, key: str) -> None:
        lock = self._store._row_locks[key]
        if lock in self._held:
            return
        await lock.acquire()
        self._held.append(lock)

    def _release(self) -> None:
        while self._held:
            self._held.pop().release()

    def _commit(self) -> None:
        self._store.patients.update(self._staged_patients)
        self._store.appointments.update(self._staged_appointments)
        self._discard()

    def _discard(self) -> None:
        self._staged_appointments.clear()
        self._staged_patients.clear()

    def _appointments(self) -> dict[str, AppointmentResult]:
        """Committed rows overlaid with this transaction's own writes."""
        return {**self._store.appointments, **self._staged_appointments}

    def _patients(self) -> dict[str, PatientInfo]:
        return {**self._store.patients, **self._staged_patients}

    def _decorate(self, appointment: AppointmentResult) -> AppointmentResult:
        patient = self._patients().get(appointment.patient_id)
        practitioner = self._store.practitioners.get(appointment.practitioner_id)
        return replace(
            appointment,
            patient_email=patient.email if patient else None,
            practitioner_name=practitioner.name if practitioner else None,
        )

    async def lock_practitioner(self, practitioner_id: str) -> Optional[PractitionerInfo]:
        practitioner = self._store.practitioners.get(practitioner_id)
        if practitioner is None:
            return None
        await self._lock(f"practitioner:{practitioner_id}")
        return practitioner

    async def find_overlapping(
        self,
        practitioner_id: str,
        start_utc: datetime,
        end_utc: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[ConflictEntry]:
        conflicts = [
            ConflictEntry(id=appt.id, start_time=appt.start_utc, end_time=appt.end_utc)
            for appt in self._appointments().values()
            if appt.practitioner_id == practitioner_id
            and appt.status in ACTIVE_STATUSES
            and appt.id != exclude_id
            and conflicts_with(appt.start_utc, appt.end_utc, start_utc, end_utc)
        ]
        return sorted(conflicts, key=lambda entry: entry.start_time)

    async def insert_appointment(self, appointment: AppointmentResult) -> AppointmentResult:
        self._staged_appointments[appointment.id] = replace(appointment)
        return self._decorate(appointment)

    async def get_appointment(
        self,
        appointment_id: str,
        for_update: bool = False,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
    ) -> Optional[AppointmentResult]:
        if for_update:
            await self._lock(f"appointment:{appointment_id}")

        appointment = self._appointments().get(appointment_id)
        if appointment is None:
            return None
        if statuses is not None and appointment.status not in set(statuses):
            return None
        return self._decorate(appointment)

    async def update_appointment_time(
        self,
        appointment_id: str,
        scheduled_at: datetime,
        start_utc: datetime,
        end_utc: datetime,
        timezone: str,
        updated_by: str,
    ) -> AppointmentResult:
        await self._lock(f"appointment:{appointment_id}")
        current = self._appointments()[appointment_id]
        updated = replace(
            current,
            scheduled_at=scheduled_at,
            start_utc=start_utc,
            end_utc=end_utc,
            timezone=timezone,
            updated_by=updated_by,
            version=current.version + 1,
        )
        self._staged_appointments[appointment_id] = updated
        return self._decorate(updated)

    async def transition_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        from_statuses: Iterable[AppointmentStatus],
        updated_by: str,
        reason: Optional[str] = None,
    ) -> int:
        # Like UPDATE ... WHERE status IN (...): wait for the row, then re-check
        await self._lock(f"appointment:{appointment_id}")
        current = self._appointments().get(appointment_id)
        if current is None or current.status not in set(from_statuses):
            return 0

        changes = {
            "status": new_status,
            "version": current.version + 1,
            "updated_by": updated_by,
        }
        if new_status == AppointmentStatus.CANCELLED:
            changes.update(
                cancelled_at=_utcnow(),
                cancellation_reason=reason,
                cancelled_by=updated_by,
            )
        self._staged_appointments[appointment_id] = replace(current, **changes)
        return 1

    async def find_patient_by_email(self, email: str) -> Optional[PatientInfo]:
        wanted = email.lower()
        for patient in self._patients().values():
            if patient.email.lower() == wanted:
                return patient
        return None

    async def create_patient(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
    ) -> PatientInfo:
        # Unique (cabinet, email): a concurrent insert waits for the first to finish
        await self._lock(f"patient:{email.lower()}")
        existing = await self.find_patient_by_email(email)
        if existing is not None:
            return existing

        patient = PatientInfo(
            id=str(uuid4()),
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
        )
        self._staged_patients[patient.id] = patient
        return patient

    async def find_service(self, service_type: str) -> Optional[ServiceInfo]:
        wanted = service_type.lower()
        for service in await self.list_services():
            if wanted in service.name.lower() or wanted in (service.category or "").lower():
                return service
        return None

    async def list_services(self) -> list[ServiceInfo]:
        return sorted(self._store.services.values(), key=lambda service: service.name)

    async def list_practitioners(
        self,
        practitioner_id: Optional[str] = None,
        specialization: Optional[str] = None,
        active_only: bool = True,
    ) -> list[PractitionerInfo]:
        practitioners = []
        for practitioner in self._store.practitioners.values():
            if practitioner_id and practitioner.id != practitioner_id:
                continue
            if specialization and specialization.lower() not in (
                practitioner.specialization or ""
            ).lower():
                continue
            if active_only and not practitioner.active:
                continue
            practitioners.append(practitioner)
        return sorted(practitioners, key=lambda p: p.name.split()[-1])

    async def list_active_intervals(
        self,
        practitioner_ids: list[str],
        start_utc: datetime,
        end_utc: datetime,
    ) -> list[BookedInterval]:
        wanted = set(practitioner_ids)
        intervals = [
            BookedInterval(
                appointment_id=appt.id,
                practitioner_id=appt.practitioner_id,
                start_utc=appt.start_utc,
                end_utc=appt.end_utc,
            )
            for appt in self._appointments().values()
            if appt.practitioner_id in wanted
            and appt.status in ACTIVE_STATUSES
            and appt.start_utc < end_utc
            and appt.end_utc > start_utc
        ]
        return sorted(intervals, key=lambda interval: interval.start_utc)

    async def find_patient_appointments(
        self,
        email: str,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
    ) -> list[AppointmentResult]:
        patient = await self.find_patient_by_email(email)
        if patient is None:
            return []

        allowed = set(statuses) if statuses is not None else None
        matches = [
            self._decorate(appt)
            for appt in self._appointments().values()
            if appt.patient_id == patient.id
            and (allowed is None or appt.status in allowed)
        ]
        return sorted(matches, key=lambda appt: appt.scheduled_at)


class InMemorySchedulingStore(SchedulingStore):
    """
    Dictionary-backed store for one cabinet.

    Usage:
        store = InMemorySchedulingStore()
        store.add_practitioner(PractitionerInfo(id="p1", name="Dr Alice Martin"))
        async with store.transaction() as tx:
            await tx.lock_practitioner("p1")
    """

    def __init__(self, cabinet_id: str = "default"):
        self.cabinet_id = cabinet_id
        self.practitioners: dict[str, PractitionerInfo] = {}
        self.services: dict[str, ServiceInfo] = {}
        self.patients: dict[str, PatientInfo] = {}
        self.appointments: dict[str, AppointmentResult] = {}
        self._row_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def add_practitioner(self, practitioner: PractitionerInfo) -> PractitionerInfo:
        self.practitioners[practitioner.id] = practitioner
        return practitioner

    def add_service(self, service: ServiceInfo) -> ServiceInfo:
        self.services[service.id] = service
        return service

    def add_patient(self, patient: PatientInfo) -> PatientInfo:
        self.patients[patient.id] = patient
        return patient

    def add_appointment(self, appointment: AppointmentResult) -> AppointmentResult:
        """Seed an appointment without conflict checks."""
        self.appointments[appointment.id] = appointment
        return appointment

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        tx = InMemoryTransaction(self)
        try:
            yield tx
        except BaseException:
            tx._discard()
            logger.debug("In-memory transaction rolled back")
            raise
        else:
            tx._commit()
        finally:
            tx._release()
