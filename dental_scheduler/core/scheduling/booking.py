"""
Booking Transaction Manager

Conflict-checked create, reschedule and cancel against one tenant's store.

Create and reschedule take a row lock on the practitioner before running
the overlap query, so two concurrent attempts on the same practitioner
serialize and the second one sees the first one's row. Cancel relies on a
status-guarded update instead of a lock.

Notifications are queued after commit and never undo a booking.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from dental_scheduler.config import settings
from dental_scheduler.core.scheduling.errors import ConflictError, ResourceNotFound
from dental_scheduler.core.scheduling.patients import find_or_create_patient
from dental_scheduler.core.scheduling.requests import (
    BookAppointmentRequest,
    CancelAppointmentRequest,
    FindPatientAppointmentsRequest,
    RescheduleAppointmentRequest,
    validate_request,
)
from dental_scheduler.core.scheduling.store import StoreTransaction, run_transaction
from dental_scheduler.core.scheduling.tenants import TenantHandle, TenantResolver
from dental_scheduler.core.scheduling.timeutils import _utcnow, as_utc, compute_interval
from dental_scheduler.core.scheduling.types import AppointmentResult
from dental_scheduler.infra.notifications import NotificationDispatcher, NotificationParams
from dental_scheduler.models.database import AppointmentStatus, MODIFIABLE_STATUSES

logger = logging.getLogger(__name__)


class BookingTransactionManager:
    """
    Appointment mutations for all tenants.

    Usage:
        manager = BookingTransactionManager(tenant_resolver, notifications)
        appointment = await manager.book_appointment(
            tenant_id="cabinet-1",
            patient_email="jane@example.com",
            practitioner_id="prac-1",
            service_type="cleaning",
            date="2024-01-15",
            time="14:00",
        )
    """

    def __init__(
        self,
        tenant_resolver: TenantResolver,
        notifications: Optional[NotificationDispatcher] = None,
        transaction_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
        default_duration: Optional[int] = None,
    ):
        self._tenants = tenant_resolver
        self._notifications = notifications
        self._timeout = transaction_timeout or settings.transaction_timeout_seconds
        self._clock = clock
        self._default_duration = default_duration or settings.default_service_duration

    # =========================================================================
    # Create
    # =========================================================================

    async def book_appointment(
        self,
        tenant_id: str,
        patient_email: str,
        practitioner_id: str,
        service_type: str,
        date: str,
        time: str,
        timezone: Optional[str] = None,
        duration: Optional[int] = None,
        notes: Optional[str] = None,
        booked_by: str = "system",
    ) -> AppointmentResult:
        """
        Book a new appointment.

        Args:
            tenant_id: Cabinet identifier
            patient_email: Patient natural key; the patient is created if unknown
            practitioner_id: Practitioner to book
            service_type: Service name or category
            date: Local date (YYYY-MM-DD)
            time: Local start time (HH:MM)
            timezone: IANA timezone, defaults to the cabinet's
            duration: Minutes; defaults to the service's duration
            notes: Free-text notes
            booked_by: Acting user

        Returns:
            The created appointment (status scheduled, version 1)

        Raises:
            ValidationError: Malformed arguments
            ResourceNotFound: Unknown tenant or practitioner
            ConflictError: The interval overlaps an active appointment
            InternalError: Store failure or timeout
        """
        request = validate_request(
            BookAppointmentRequest,
            patient_email=patient_email,
            practitioner_id=practitioner_id,
            service_type=service_type,
            date=date,
            time=time,
            timezone=timezone,
            duration=duration,
            notes=notes,
            booked_by=booked_by,
        )
        tenant = await self._tenants.resolve(tenant_id)
        tz_name = request.timezone or tenant.timezone

        async def create(tx: StoreTransaction) -> AppointmentResult:
            patient = await find_or_create_patient(tx, request.patient_email)

            service = await tx.find_service(request.service_type)
            minutes = request.duration or (
                service.duration_minutes if service else self._default_duration
            )
            scheduled_at, start_utc, end_utc = compute_interval(
                request.date, request.time, tz_name, minutes
            )

            practitioner = await tx.lock_practitioner(request.practitioner_id)
            if practitioner is None or not practitioner.active:
                raise ResourceNotFound("practitioner", request.practitioner_id)

            conflicts = await tx.find_overlapping(practitioner.id, start_utc, end_utc)
            if conflicts:
                raise ConflictError(conflicts)

            return await tx.insert_appointment(
                AppointmentResult(
                    id=str(uuid4()),
                    patient_id=patient.id,
                    practitioner_id=practitioner.id,
                    service_id=service.id if service else None,
                    service_type=request.service_type,
                    scheduled_at=scheduled_at,
                    start_utc=start_utc,
                    end_utc=end_utc,
                    timezone=tz_name,
                    duration_minutes=minutes,
                    status=AppointmentStatus.SCHEDULED,
                    version=1,
                    notes=request.notes,
                    created_by=request.booked_by,
                    updated_by=request.booked_by,
                )
            )

        try:
            appointment = await run_transaction(tenant.store, create, self._timeout)
        except ConflictError as e:
            logger.info(
                f"Booking conflict for practitioner {request.practitioner_id} "
                f"at {request.date} {request.time}: {len(e.conflicts)} overlapping"
            )
            raise

        logger.info(
            f"Booked appointment {appointment.id} for practitioner "
            f"{appointment.practitioner_id} at {appointment.date} {appointment.time}"
        )
        await self._notify_booked(tenant, appointment)
        return appointment

    # =========================================================================
    # Reschedule
    # =========================================================================

    async def reschedule_appointment(
        self,
        tenant_id: str,
        appointment_id: str,
        new_date: str,
        new_time: str,
        timezone: Optional[str] = None,
        rescheduled_by: str = "system",
    ) -> AppointmentResult:
        """
        Move an appointment, keeping its duration and practitioner.

        The overlap check excludes the appointment itself, so moving it onto
        the time it already occupies succeeds.

        Raises:
            ValidationError: Malformed arguments
            ResourceNotFound: Unknown tenant, or the appointment is missing or
                no longer scheduled/confirmed
            ConflictError: The new interval overlaps another active appointment
            InternalError: Store failure or timeout
        """
        request = validate_request(
            RescheduleAppointmentRequest,
            appointment_id=appointment_id,
            new_date=new_date,
            new_time=new_time,
            timezone=timezone,
            rescheduled_by=rescheduled_by,
        )
        tenant = await self._tenants.resolve(tenant_id)

        async def reschedule(tx: StoreTransaction) -> AppointmentResult:
            current = await tx.get_appointment(
                request.appointment_id,
                for_update=True,
                statuses=MODIFIABLE_STATUSES,
            )
            if current is None:
                raise ResourceNotFound("appointment", request.appointment_id)

            tz_name = request.timezone or current.timezone or tenant.timezone
            scheduled_at, start_utc, end_utc = compute_interval(
                request.new_date, request.new_time, tz_name, current.duration_minutes
            )

            await tx.lock_practitioner(current.practitioner_id)
            conflicts = await tx.find_overlapping(
                current.practitioner_id, start_utc, end_utc, exclude_id=current.id
            )
            if conflicts:
                raise ConflictError(conflicts)

            return await tx.update_appointment_time(
                current.id,
                scheduled_at=scheduled_at,
                start_utc=start_utc,
                end_utc=end_utc,
                timezone=tz_name,
                updated_by=request.rescheduled_by,
            )

        appointment = await run_transaction(tenant.store, reschedule, self._timeout)
        logger.info(
            f"Rescheduled appointment {appointment.id} to {appointment.date} "
            f"{appointment.time} (version {appointment.version})"
        )

        if self._notifications is not None:
            try:
                await self._notifications.queue_reschedule(self._params(tenant, appointment))
            except Exception as e:
                logger.error(f"Failed to queue reschedule notice for {appointment.id}: {e}")

        return appointment

    # =========================================================================
    # Cancel
    # =========================================================================

    async def cancel_appointment(
        self,
        tenant_id: str,
        appointment_id: str,
        reason: Optional[str] = None,
        cancelled_by: str = "system",
    ) -> None:
        """
        Cancel a scheduled or confirmed appointment.

        Cancelling twice, or cancelling a completed appointment, raises
        ResourceNotFound and leaves the record untouched.

        Raises:
            ValidationError: Malformed arguments
            ResourceNotFound: Unknown tenant, or no cancellable appointment
            InternalError: Store failure or timeout
        """
        request = validate_request(
            CancelAppointmentRequest,
            appointment_id=appointment_id,
            reason=reason,
            cancelled_by=cancelled_by,
        )
        tenant = await self._tenants.resolve(tenant_id)

        async def cancel(tx: StoreTransaction) -> AppointmentResult:
            current = await tx.get_appointment(
                request.appointment_id, statuses=MODIFIABLE_STATUSES
            )
            if current is None:
                raise ResourceNotFound("appointment", request.appointment_id)

            changed = await tx.transition_status(
                current.id,
                AppointmentStatus.CANCELLED,
                from_statuses=MODIFIABLE_STATUSES,
                updated_by=request.cancelled_by,
                reason=request.reason,
            )
            if changed == 0:
                # Lost the race to a concurrent cancel or completion
                raise ResourceNotFound(
                    "appointment",
                    request.appointment_id,
                    f"appointment '{request.appointment_id}' was already updated",
                )
            return current

        appointment = await run_transaction(tenant.store, cancel, self._timeout)
        logger.info(f"Cancelled appointment {appointment.id} by {request.cancelled_by}")

        if self._notifications is not None:
            params = self._params(tenant, appointment)
            params.reason = request.reason
            try:
                await self._notifications.queue_cancellation(params)
            except Exception as e:
                logger.error(f"Failed to queue cancellation notice for {appointment.id}: {e}")

    # =========================================================================
    # Queries
    # =========================================================================

    async def find_patient_appointments(
        self,
        tenant_id: str,
        patient_email: str,
        status: Optional[list[AppointmentStatus]] = None,
    ) -> list[AppointmentResult]:
        """
        Appointments of a patient ordered by scheduled time.

        Returns an empty list when the patient is unknown.
        """
        request = validate_request(
            FindPatientAppointmentsRequest,
            patient_email=patient_email,
            status=status,
        )
        tenant = await self._tenants.resolve(tenant_id)

        async def lookup(tx: StoreTransaction) -> list[AppointmentResult]:
            return await tx.find_patient_appointments(request.patient_email, request.status)

        return await run_transaction(tenant.store, lookup, self._timeout)

    # =========================================================================
    # Notifications
    # =========================================================================

    @staticmethod
    def _params(tenant: TenantHandle, appointment: AppointmentResult) -> NotificationParams:
        return NotificationParams(
            tenant_id=tenant.tenant_id,
            appointment_id=appointment.id,
            recipient_email=appointment.patient_email or "",
            date=appointment.date,
            time=appointment.time,
            service_type=appointment.service_type,
            practitioner_name=appointment.practitioner_name,
            cabinet_name=tenant.name,
            notes=appointment.notes,
        )

    async def _notify_booked(self, tenant: TenantHandle, appointment: AppointmentResult) -> None:
        """Queue the confirmation and any reminders still in the future."""
        if self._notifications is None:
            return
        if not appointment.patient_email:
            logger.warning(f"No patient email on appointment {appointment.id}, skipping notifications")
            return

        params = self._params(tenant, appointment)
        try:
            await self._notifications.queue_confirmation(params)
        except Exception as e:
            logger.error(f"Failed to queue confirmation for {appointment.id}: {e}")

        now = self._clock()
        start = as_utc(appointment.start_utc)
        for hours in settings.reminder_offsets:
            fire_at = start - timedelta(hours=hours)
            if fire_at <= now:
                continue
            reminder = self._params(tenant, appointment)
            reminder.hours_before = hours
            try:
                await self._notifications.queue_reminder(reminder, fire_at)
            except Exception as e:
                logger.error(f"Failed to queue {hours}h reminder for {appointment.id}: {e}")
