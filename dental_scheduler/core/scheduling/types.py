"""Domain types exchanged between the scheduling stores, services and callers."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from dental_scheduler.models.database import AppointmentStatus


class TimeWindow(str, Enum):
    """Part of the day a caller wants to restrict availability to."""

    MORNING = "morning"          # ends by 12:00
    AFTERNOON = "afternoon"      # [12:00, 18:00)
    EVENING = "evening"          # starts at 18:00 or later


@dataclass
class PractitionerInfo:
    """Practitioner as seen by scheduling."""

    id: str
    name: str
    specialization: Optional[str] = None
    active: bool = True
    schedule: Optional[dict] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "specialization": self.specialization,
            "active": self.active,
        }


@dataclass
class ServiceInfo:
    """Bookable service."""

    id: str
    name: str
    duration_minutes: int
    category: Optional[str] = None
    price: Optional[Decimal] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "duration_minutes": self.duration_minutes,
            "price": str(self.price) if self.price is not None else None,
        }


@dataclass
class PatientInfo:
    """Patient as seen by scheduling."""

    id: str
    email: str
    first_name: str = "Patient"
    last_name: str = "Name"
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
        }


@dataclass
class BookedInterval:
    """Occupied interval for one practitioner."""

    appointment_id: str
    practitioner_id: str
    start_utc: datetime
    end_utc: datetime


@dataclass
class ConflictEntry:
    """Existing appointment that overlaps a proposed interval."""

    id: str
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }


@dataclass
class AppointmentResult:
    """Persisted appointment returned by stores and the booking manager."""

    id: str
    patient_id: str
    practitioner_id: str
    service_type: str
    scheduled_at: datetime  # naive wall clock in `timezone`
    start_utc: datetime
    end_utc: datetime
    timezone: str
    duration_minutes: int
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    version: int = 1
    service_id: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None

    # Denormalized for replies and notifications
    patient_email: Optional[str] = None
    practitioner_name: Optional[str] = None

    @property
    def date(self) -> str:
        return self.scheduled_at.strftime("%Y-%m-%d")

    @property
    def time(self) -> str:
        return self.scheduled_at.strftime("%H:%M")

    @property
    def is_active(self) -> bool:
        return self.status in (
            AppointmentStatus.SCHEDULED,
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.IN_PROGRESS,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "patient_email": self.patient_email,
            "practitioner_id": self.practitioner_id,
            "practitioner_name": self.practitioner_name,
            "service_id": self.service_id,
            "service_type": self.service_type,
            "date": self.date,
            "time": self.time,
            "timezone": self.timezone,
            "start_utc": self.start_utc.isoformat(),
            "end_utc": self.end_utc.isoformat(),
            "duration_minutes": self.duration_minutes,
            "status": self.status.value,
            "version": self.version,
            "notes": self.notes,
        }


@dataclass
class Slot:
    """Candidate bookable interval. Never persisted."""

    practitioner_id: str
    practitioner_name: str
    start_time: datetime  # aware, tenant-local
    end_time: datetime
    duration_minutes: int

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "practitioner_id": self.practitioner_id,
            "practitioner_name": self.practitioner_name,
            "date": self.start_time.strftime("%Y-%m-%d"),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "start": self.start_time.isoformat(),
            "end": self.end_time.isoformat(),
            "duration_minutes": self.duration_minutes,
        }


@dataclass
class AvailabilityResult:
    """Slots for one date plus the opening hours they were drawn from."""

    date: str
    slots: list[Slot] = field(default_factory=list)
    business_hours: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "date": self.date,
            "slots": [slot.to_dict() for slot in self.slots],
            "business_hours": self.business_hours,
        }
