"""
SQLAlchemy implementation of the scheduling store.

One SqlSchedulingStore serves one cabinet. It either owns a dedicated
engine (isolated tenant database) or shares the main engine and scopes
every query by cabinet_id.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional

from sqlalchemy import and_, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from dental_scheduler.config import settings
from dental_scheduler.core.scheduling.store import SchedulingStore, StoreTransaction
from dental_scheduler.core.scheduling.timeutils import _utcnow, as_utc, naive_utc
from dental_scheduler.core.scheduling.types import (
    AppointmentResult,
    BookedInterval,
    ConflictEntry,
    PatientInfo,
    PractitionerInfo,
    ServiceInfo,
)
from dental_scheduler.infra.database import create_session_factory
from dental_scheduler.models.database import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    Patient,
    Practitioner,
    Service,
)

logger = logging.getLogger(__name__)


def _display_name(title: Optional[str], first_name: str, last_name: str) -> str:
    if title:
        return f"{title} {first_name} {last_name}"
    return f"{first_name} {last_name}"


def _practitioner_info(row: Practitioner) -> PractitionerInfo:
    return PractitionerInfo(
        id=row.id,
        name=row.full_name,
        specialization=row.specialization,
        active=row.is_active,
        schedule=row.schedule,
    )


def _patient_info(row: Patient) -> PatientInfo:
    return PatientInfo(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
    )


def _appointment_result(
    row: Appointment,
    patient_email: Optional[str] = None,
    practitioner_name: Optional[str] = None,
) -> AppointmentResult:
    return AppointmentResult(
        id=row.id,
        patient_id=row.patient_id,
        practitioner_id=row.practitioner_id,
        service_id=row.service_id,
        service_type=row.service_type,
        scheduled_at=row.scheduled_at,
        start_utc=as_utc(row.start_utc),
        end_utc=as_utc(row.end_utc),
        timezone=row.timezone,
        duration_minutes=row.duration_minutes,
        status=row.status,
        version=row.version,
        notes=row.notes,
        created_by=row.created_by,
        updated_by=row.updated_by,
        cancelled_at=as_utc(row.cancelled_at),
        cancellation_reason=row.cancellation_reason,
        cancelled_by=row.cancelled_by,
        patient_email=patient_email,
        practitioner_name=practitioner_name,
    )


class SqlStoreTransaction(StoreTransaction):
    """Store operations bound to one AsyncSession transaction."""

    def __init__(self, session: AsyncSession, cabinet_id: str, use_savepoints: bool):
        self.session = session
        self.cabinet_id = cabinet_id
        self._use_savepoints = use_savepoints

    def _appointment_query(self):
        return (
            select(
                Appointment,
                Patient.email,
                Practitioner.title,
                Practitioner.first_name,
                Practitioner.last_name,
            )
            .join(Patient, Patient.id == Appointment.patient_id)
            .join(Practitioner, Practitioner.id == Appointment.practitioner_id)
            .where(Appointment.cabinet_id == self.cabinet_id)
            .execution_options(populate_existing=True)
        )

    @staticmethod
    def _from_joined(row) -> AppointmentResult:
        appointment, email, title, first_name, last_name = row
        return _appointment_result(
            appointment,
            patient_email=email,
            practitioner_name=_display_name(title, first_name, last_name),
        )

    async def lock_practitioner(self, practitioner_id: str) -> Optional[PractitionerInfo]:
        stmt = (
            select(Practitioner)
            .where(
                Practitioner.id == practitioner_id,
                Practitioner.cabinet_id == self.cabinet_id,
            )
            .with_for_update()
        )
        practitioner = (await self.session.execute(stmt)).scalar_one_or_none()
        if practitioner is None:
            return None
        return _practitioner_info(practitioner)

    async def find_overlapping(
        self,
        practitioner_id: str,
        start_utc: datetime,
        end_utc: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[ConflictEntry]:
        start = naive_utc(start_utc)
        end = naive_utc(end_utc)

        stmt = select(Appointment.id, Appointment.start_utc, Appointment.end_utc).where(
            Appointment.cabinet_id == self.cabinet_id,
            Appointment.practitioner_id == practitioner_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            or_(
                and_(Appointment.start_utc <= start, Appointment.end_utc > start),
                and_(Appointment.start_utc < end, Appointment.end_utc >= end),
                and_(Appointment.start_utc >= start, Appointment.start_utc < end),
            ),
        )
        if exclude_id:
            stmt = stmt.where(Appointment.id != exclude_id)
        stmt = stmt.order_by(Appointment.start_utc)

        rows = (await self.session.execute(stmt)).all()
        return [
            ConflictEntry(id=row.id, start_time=as_utc(row.start_utc), end_time=as_utc(row.end_utc))
            for row in rows
        ]

    async def insert_appointment(self, appointment: AppointmentResult) -> AppointmentResult:
        row = Appointment(
            id=appointment.id,
            cabinet_id=self.cabinet_id,
            patient_id=appointment.patient_id,
            practitioner_id=appointment.practitioner_id,
            service_id=appointment.service_id,
            service_type=appointment.service_type,
            scheduled_at=appointment.scheduled_at,
            start_utc=naive_utc(appointment.start_utc),
            end_utc=naive_utc(appointment.end_utc),
            timezone=appointment.timezone,
            duration_minutes=appointment.duration_minutes,
            status=appointment.status,
            version=appointment.version,
            notes=appointment.notes,
            created_by=appointment.created_by,
            updated_by=appointment.updated_by,
        )
        self.session.add(row)
        await self.session.flush()

        inserted = await self.get_appointment(appointment.id)
        if inserted is None:
            raise RuntimeError(f"Appointment {appointment.id} missing after insert")
        return inserted

    async def get_appointment(
        self,
        appointment_id: str,
        for_update: bool = False,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
    ) -> Optional[AppointmentResult]:
        stmt = self._appointment_query().where(Appointment.id == appointment_id)
        if statuses is not None:
            stmt = stmt.where(Appointment.status.in_(list(statuses)))
        if for_update:
            stmt = stmt.with_for_update(of=Appointment)

        row = (await self.session.execute(stmt)).first()
        if row is None:
            return None
        return self._from_joined(row)

    async def update_appointment_time(
        self,
        appointment_id: str,
        scheduled_at: datetime,
        start_utc: datetime,
        end_utc: datetime,
        timezone: str,
        updated_by: str,
    ) -> AppointmentResult:
        stmt = (
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.cabinet_id == self.cabinet_id,
            )
            .values(
                scheduled_at=scheduled_at,
                start_utc=naive_utc(start_utc),
                end_utc=naive_utc(end_utc),
                timezone=timezone,
                updated_by=updated_by,
                version=Appointment.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

        updated = await self.get_appointment(appointment_id)
        if updated is None:
            raise RuntimeError(f"Appointment {appointment_id} vanished during update")
        return updated

    async def transition_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        from_statuses: Iterable[AppointmentStatus],
        updated_by: str,
        reason: Optional[str] = None,
    ) -> int:
        values = {
            "status": new_status,
            "version": Appointment.version + 1,
            "updated_by": updated_by,
        }
        if new_status == AppointmentStatus.CANCELLED:
            values["cancelled_at"] = naive_utc(_utcnow())
            values["cancellation_reason"] = reason
            values["cancelled_by"] = updated_by

        stmt = (
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.cabinet_id == self.cabinet_id,
                Appointment.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def find_patient_by_email(self, email: str) -> Optional[PatientInfo]:
        stmt = select(Patient).where(
            Patient.cabinet_id == self.cabinet_id,
            func.lower(Patient.email) == email.lower(),
        )
        patient = (await self.session.execute(stmt)).scalar_one_or_none()
        if patient is None:
            return None
        return _patient_info(patient)

    async def create_patient(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
    ) -> PatientInfo:
        patient = Patient(
            cabinet_id=self.cabinet_id,
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
        )

        if not self._use_savepoints:
            self.session.add(patient)
            await self.session.flush()
            return _patient_info(patient)

        # A concurrent booking may create the same patient first
        try:
            async with self.session.begin_nested():
                self.session.add(patient)
        except IntegrityError:
            existing = await self.find_patient_by_email(email)
            if existing is None:
                raise
            logger.info(f"Patient {email} created concurrently, reusing {existing.id}")
            return existing
        return _patient_info(patient)

    async def find_service(self, service_type: str) -> Optional[ServiceInfo]:
        pattern = f"%{service_type.lower()}%"
        stmt = (
            select(Service)
            .where(
                Service.cabinet_id == self.cabinet_id,
                Service.is_active.is_(True),
                or_(
                    func.lower(Service.name).like(pattern),
                    func.lower(Service.category).like(pattern),
                ),
            )
            .order_by(Service.name)
            .limit(1)
        )
        service = (await self.session.execute(stmt)).scalar_one_or_none()
        if service is None:
            return None
        return ServiceInfo(
            id=service.id,
            name=service.name,
            category=service.category,
            duration_minutes=service.duration_minutes,
            price=service.price,
        )

    async def list_services(self) -> list[ServiceInfo]:
        stmt = (
            select(Service)
            .where(Service.cabinet_id == self.cabinet_id, Service.is_active.is_(True))
            .order_by(Service.name)
        )
        services = (await self.session.execute(stmt)).scalars().all()
        return [
            ServiceInfo(
                id=service.id,
                name=service.name,
                category=service.category,
                duration_minutes=service.duration_minutes,
                price=service.price,
            )
            for service in services
        ]

    async def list_practitioners(
        self,
        practitioner_id: Optional[str] = None,
        specialization: Optional[str] = None,
        active_only: bool = True,
    ) -> list[PractitionerInfo]:
        stmt = select(Practitioner).where(Practitioner.cabinet_id == self.cabinet_id)
        if practitioner_id:
            stmt = stmt.where(Practitioner.id == practitioner_id)
        if specialization:
            stmt = stmt.where(
                func.lower(Practitioner.specialization).like(f"%{specialization.lower()}%")
            )
        if active_only:
            stmt = stmt.where(Practitioner.is_active.is_(True))
        stmt = stmt.order_by(Practitioner.last_name, Practitioner.first_name)

        rows = (await self.session.execute(stmt)).scalars().all()
        return [_practitioner_info(row) for row in rows]

    async def list_active_intervals(
        self,
        practitioner_ids: list[str],
        start_utc: datetime,
        end_utc: datetime,
    ) -> list[BookedInterval]:
        if not practitioner_ids:
            return []

        stmt = (
            select(
                Appointment.id,
                Appointment.practitioner_id,
                Appointment.start_utc,
                Appointment.end_utc,
            )
            .where(
                Appointment.cabinet_id == self.cabinet_id,
                Appointment.practitioner_id.in_(practitioner_ids),
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_utc < naive_utc(end_utc),
                Appointment.end_utc > naive_utc(start_utc),
            )
            .order_by(Appointment.start_utc)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            BookedInterval(
                appointment_id=row.id,
                practitioner_id=row.practitioner_id,
                start_utc=as_utc(row.start_utc),
                end_utc=as_utc(row.end_utc),
            )
            for row in rows
        ]

    async def find_patient_appointments(
        self,
        email: str,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
    ) -> list[AppointmentResult]:
        stmt = self._appointment_query().where(func.lower(Patient.email) == email.lower())
        if statuses is not None:
            stmt = stmt.where(Appointment.status.in_(list(statuses)))
        stmt = stmt.order_by(Appointment.scheduled_at)

        rows = (await self.session.execute(stmt)).all()
        return [self._from_joined(row) for row in rows]


class SqlSchedulingStore(SchedulingStore):
    """
    Scheduling store over an async SQLAlchemy engine.

    Usage:
        store = SqlSchedulingStore(engine, cabinet_id="cab-1")
        async with store.transaction() as tx:
            practitioners = await tx.list_practitioners()
    """

    def __init__(
        self,
        engine: AsyncEngine,
        cabinet_id: str,
        owns_engine: bool = False,
        lock_timeout_ms: Optional[int] = None,
    ):
        """Initialize store.

        Args:
            engine: Engine holding this cabinet's tables
            cabinet_id: Cabinet every query is scoped to
            owns_engine: Dispose the engine on close()
            lock_timeout_ms: PostgreSQL lock_timeout inside transactions
        """
        self.engine = engine
        self.cabinet_id = cabinet_id
        self._owns_engine = owns_engine
        self._session_factory = create_session_factory(engine)
        self._is_postgres = engine.dialect.name == "postgresql"
        self._lock_timeout_ms = (
            lock_timeout_ms if lock_timeout_ms is not None else settings.lock_timeout_ms
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        session = self._session_factory()
        try:
            if self._is_postgres:
                await session.execute(
                    text(f"SET LOCAL lock_timeout = {int(self._lock_timeout_ms)}")
                )
            yield SqlStoreTransaction(session, self.cabinet_id, self._is_postgres)
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()
