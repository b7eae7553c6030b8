"""
Appointment Endpoints.

Create, reschedule, cancel and list appointments. Scheduling errors are
mapped to HTTP statuses by the application exception handlers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from dental_scheduler.api.dependencies import (
    Services,
    get_current_user,
    get_services,
    get_tenant_id,
)
from dental_scheduler.core.intelligence.session.models import ChatUser
from dental_scheduler.models.database import AppointmentStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


class BookAppointmentBody(BaseModel):
    """Booking request."""

    patient_email: str = Field(..., examples=["jane@example.com"])
    practitioner_id: str
    service_type: str = Field(..., examples=["cleaning"])
    date: str = Field(..., description="YYYY-MM-DD", examples=["2024-01-15"])
    time: str = Field(..., description="HH:MM (24h)", examples=["14:00"])
    timezone: Optional[str] = Field(default=None, description="IANA timezone")
    duration: Optional[int] = Field(default=None, description="Minutes (15-480)")
    notes: Optional[str] = None


class RescheduleBody(BaseModel):
    """Reschedule request."""

    date: str = Field(..., description="YYYY-MM-DD")
    time: str = Field(..., description="HH:MM (24h)")
    timezone: Optional[str] = None


class CancelBody(BaseModel):
    """Cancellation request."""

    reason: Optional[str] = Field(default=None, max_length=500)


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    message: str
    details: Optional[dict] = None


ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Tenant or appointment not found"},
    409: {"model": ErrorResponse, "description": "Time slot already taken"},
    422: {"model": ErrorResponse, "description": "Invalid request"},
}


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
    responses=ERROR_RESPONSES,
)
async def book_appointment(
    body: BookAppointmentBody,
    tenant_id: str = Depends(get_tenant_id),
    user: ChatUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Create an appointment after checking for overlaps."""
    appointment = await services.booking.book_appointment(
        tenant_id=tenant_id,
        patient_email=body.patient_email,
        practitioner_id=body.practitioner_id,
        service_type=body.service_type,
        date=body.date,
        time=body.time,
        timezone=body.timezone,
        duration=body.duration,
        notes=body.notes,
        booked_by=user.user_id,
    )
    return appointment.to_dict()


@router.patch(
    "/{appointment_id}",
    response_model=dict,
    summary="Reschedule an appointment",
    responses=ERROR_RESPONSES,
)
async def reschedule_appointment(
    appointment_id: str,
    body: RescheduleBody,
    tenant_id: str = Depends(get_tenant_id),
    user: ChatUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Move an appointment, keeping its duration."""
    appointment = await services.booking.reschedule_appointment(
        tenant_id=tenant_id,
        appointment_id=appointment_id,
        new_date=body.date,
        new_time=body.time,
        timezone=body.timezone,
        rescheduled_by=user.user_id,
    )
    return appointment.to_dict()


@router.post(
    "/{appointment_id}/cancel",
    response_model=dict,
    summary="Cancel an appointment",
    responses=ERROR_RESPONSES,
)
async def cancel_appointment(
    appointment_id: str,
    body: Optional[CancelBody] = None,
    tenant_id: str = Depends(get_tenant_id),
    user: ChatUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """
    Cancel a scheduled or confirmed appointment.

    Cancelling twice returns 404 on the second call.
    """
    await services.booking.cancel_appointment(
        tenant_id=tenant_id,
        appointment_id=appointment_id,
        reason=body.reason if body else None,
        cancelled_by=user.user_id,
    )
    return {"appointment_id": appointment_id, "status": AppointmentStatus.CANCELLED.value}


@router.get(
    "",
    response_model=dict,
    summary="List a patient's appointments",
    responses={422: ERROR_RESPONSES[422], 404: ERROR_RESPONSES[404]},
)
async def find_patient_appointments(
    patient_email: str = Query(..., description="Patient email"),
    appointment_status: Optional[list[AppointmentStatus]] = Query(default=None, alias="status"),
    tenant_id: str = Depends(get_tenant_id),
    services: Services = Depends(get_services),
) -> dict:
    """Appointments ordered by scheduled time."""
    appointments = await services.booking.find_patient_appointments(
        tenant_id=tenant_id,
        patient_email=patient_email,
        status=appointment_status,
    )
    return {"appointments": [appointment.to_dict() for appointment in appointments]}
