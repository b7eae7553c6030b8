"""
Boundary validation for scheduling operations.

Each public scheduling operation validates its arguments through one of
these models before touching a store. Failures surface as
errors.ValidationError.
"""

from datetime import date
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from dental_scheduler.core.scheduling.errors import ValidationError
from dental_scheduler.core.scheduling.types import TimeWindow
from dental_scheduler.models.database import AppointmentStatus

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
EMAIL_PATTERN = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"

MIN_DURATION = 15
MAX_DURATION = 480

T = TypeVar("T", bound=BaseModel)


def _check_calendar_date(value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            date.fromisoformat(value)
        except ValueError as e:
            raise ValueError("not a calendar date") from e
    return value


class _Request(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class CheckAvailabilityRequest(_Request):
    """Arguments of check_availability."""

    date: str = Field(..., pattern=DATE_PATTERN)
    service_type: str = Field(..., min_length=1, max_length=100)
    practitioner_id: Optional[str] = Field(default=None, max_length=36)
    time_window: Optional[TimeWindow] = None
    timezone: Optional[str] = Field(default=None, max_length=50)

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str) -> str:
        return _check_calendar_date(value)


class BookAppointmentRequest(_Request):
    """Arguments of book_appointment."""

    patient_email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    practitioner_id: str = Field(..., min_length=1, max_length=36)
    service_type: str = Field(..., min_length=1, max_length=100)
    date: str = Field(..., pattern=DATE_PATTERN)
    time: str = Field(..., pattern=TIME_PATTERN)
    timezone: Optional[str] = Field(default=None, max_length=50)
    duration: Optional[int] = Field(default=None, ge=MIN_DURATION, le=MAX_DURATION)
    notes: Optional[str] = Field(default=None, max_length=2000)
    booked_by: str = Field(default="system", min_length=1, max_length=100)

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str) -> str:
        return _check_calendar_date(value)

    @field_validator("patient_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class RescheduleAppointmentRequest(_Request):
    """Arguments of reschedule_appointment."""

    appointment_id: str = Field(..., min_length=1, max_length=36)
    new_date: str = Field(..., pattern=DATE_PATTERN)
    new_time: str = Field(..., pattern=TIME_PATTERN)
    timezone: Optional[str] = Field(default=None, max_length=50)
    rescheduled_by: str = Field(default="system", min_length=1, max_length=100)

    @field_validator("new_date")
    @classmethod
    def check_date(cls, value: str) -> str:
        return _check_calendar_date(value)


class CancelAppointmentRequest(_Request):
    """Arguments of cancel_appointment."""

    appointment_id: str = Field(..., min_length=1, max_length=36)
    reason: Optional[str] = Field(default=None, max_length=1000)
    cancelled_by: str = Field(default="system", min_length=1, max_length=100)


class FindPatientAppointmentsRequest(_Request):
    """Arguments of find_patient_appointments."""

    patient_email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    status: Optional[list[AppointmentStatus]] = None

    @field_validator("patient_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


def validate_request(model: type[T], **values: Any) -> T:
    """Build a request model, converting failures to ValidationError."""
    try:
        return model(**values)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e
